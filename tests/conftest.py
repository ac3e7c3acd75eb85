"""Shared test fixtures for ctxintel."""

from __future__ import annotations

from pathlib import Path

import pytest


class FakeClock:
    """A settable clock for cooldowns, recency and staleness."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def js_project(tmp_path: Path) -> Path:
    """A small JavaScript project with internal, external and test imports."""
    src = tmp_path / "src"
    src.mkdir()

    (src / "auth.js").write_text('''import express from 'express';
import { hashPassword } from './utils';

// Authenticate a user against the store
export function login(user, password) {
  const hashed = hashPassword(password);
  return user.password === hashed;
}

export function logout(session) {
  session.active = false;
}
''')

    (src / "utils.js").write_text('''function hashPassword(value) {
  return value.split('').reverse().join('');
}

function formatDate(date) {
  return date.toISOString();
}

module.exports = { hashPassword, formatDate };
''')

    (src / "random.js").write_text('''function shuffle(items) {
  return items.sort(() => Math.random() - 0.5);
}

module.exports = { shuffle };
''')

    api = src / "api"
    api.mkdir()
    (api / "index.js").write_text('''const auth = require('../auth');
const lodash = require('lodash');

function handleRequest(req) {
  return auth.login(req.user, req.password);
}

module.exports = { handleRequest };
''')

    (tmp_path / "auth.test.js").write_text('''const { login } = require('./src/auth');

test('login rejects a wrong password', () => {
  expect(login({ password: 'x' }, 'y')).toBe(false);
});
''')

    (tmp_path / "package.json").write_text('{"name": "sample", "dependencies": {"express": "^4.0.0"}}\n')
    (tmp_path / "README.md").write_text("# Sample\n\nLogin and session handling.\n")
    return tmp_path


@pytest.fixture
def py_project(tmp_path: Path) -> Path:
    """A small Python package with relative imports and one broken file."""
    pkg = tmp_path / "shop"
    pkg.mkdir()
    (pkg / "__init__.py").write_text('"""Shop package."""\n\nfrom .cart import Cart\n')
    (pkg / "cart.py").write_text('''"""Shopping cart."""

from .pricing import calculate_total


class Cart:
    def __init__(self):
        self.items = []

    def add_item(self, item):
        self.items.append(item)

    def total(self):
        return calculate_total(self.items)
''')
    (pkg / "pricing.py").write_text('''"""Prices and tax."""

import decimal

TAX_RATE = 0.08


def calculate_total(items):
    return sum(item.price for item in items) * (1 + TAX_RATE)
''')
    (tmp_path / "broken.py").write_text("def broken(:\n    pass\n")
    return tmp_path


@pytest.fixture
def two_file_project(tmp_path: Path) -> Path:
    """``a.js`` imports ``./b``; ``b.js`` imports nothing."""
    (tmp_path / "a.js").write_text("import { b } from './b';\n\nexport const a = b + 1;\n")
    (tmp_path / "b.js").write_text("export const b = 1;\n")
    return tmp_path

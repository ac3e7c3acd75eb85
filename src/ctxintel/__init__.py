"""ctxintel - decides which files matter for a coding query and how much of each fits."""

__version__ = "0.1.0"

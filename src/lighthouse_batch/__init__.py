"""Run Lighthouse across a batch of URLs and collect category scores."""

__version__ = "1.0.0"

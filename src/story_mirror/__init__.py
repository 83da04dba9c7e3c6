"""Story Mirror - reconcile GitLab activity into story and reaction records."""

__version__ = "0.1.0"

"""Exchange wallet workers: confirmed block scanning, transaction discovery and withdrawal broadcasting."""

__version__ = "0.1.0"
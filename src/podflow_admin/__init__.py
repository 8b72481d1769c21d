"""PodcastFlow administration backend: organization settings and the audit trail."""

__version__ = "0.1.0"

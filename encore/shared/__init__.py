"""Queue engine shared by every entry point: models, stores, ordering, lifecycle, notifier."""

"""
Error taxonomy shared by the store, the statistics engine and the service layer.
"""


class JobStatsError(Exception):
    """Base class for all jobstats errors."""
    pass


class StorageUnavailable(JobStatsError):
    """The object store is not configured or cannot be reached."""
    pass


class NotFound(JobStatsError):
    """A named object does not exist."""
    pass


class ArchiveNotFound(NotFound):
    """A monthly archive was requested by name and does not exist."""

    def __init__(self, month: str):
        super().__init__(f"No archive for month {month}")
        self.month = month


class MalformedRecord(JobStatsError):
    """A posting or shard line failed to parse or is missing required fields."""

    def __init__(self, message: str, errors=None):
        super().__init__(message)
        self.errors = list(errors or [])


class PartialShardMismatch(JobStatsError):
    """A metadata shard and its description shard disagree on record ids."""

    def __init__(self, date: str, missing_descriptions=(), orphan_descriptions=()):
        self.date = date
        self.missing_descriptions = sorted(missing_descriptions)
        self.orphan_descriptions = sorted(orphan_descriptions)
        super().__init__(
            f"Shard mismatch for {date}: "
            f"{len(self.missing_descriptions)} without description, "
            f"{len(self.orphan_descriptions)} orphan descriptions"
        )


class ConcurrentModification(JobStatsError):
    """A conditional write lost against another writer."""

    def __init__(self, key: str, expected_version=None):
        super().__init__(f"Object {key} changed since it was read (expected version {expected_version})")
        self.key = key
        self.expected_version = expected_version

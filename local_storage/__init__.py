"""Install state kept on the local filesystem.

Records of installed plugins, guarded by an exclusive file lock so that
concurrent CLI invocations never interleave their read-modify-writes.
"""

from local_storage.records import InstallRecord, InstallRecordStore, exclusive_lock

__all__ = ["InstallRecord", "InstallRecordStore", "exclusive_lock"]

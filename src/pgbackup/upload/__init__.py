from pgbackup.upload.stage import UploadStage
from pgbackup.upload.sync import RcloneClient, SyncClient

__all__ = ["RcloneClient", "SyncClient", "UploadStage"]

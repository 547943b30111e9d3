"""Models for the builds app.

Build - one row per uploaded build; upload_id is the primary key and the only
key used to locate the binary on disk.
"""
from tortoise import fields, models


class Build(models.Model):
    upload_id = fields.CharField(pk=True, max_length=255)
    bundle_id = fields.CharField(max_length=255, db_index=True)
    version = fields.TextField()
    build_number = fields.TextField()
    title = fields.TextField()
    icon = fields.TextField(null=True)
    description = fields.TextField(null=True)
    file_size = fields.BigIntField()
    # set explicitly by the uploader; this is the only ordering key
    created_at = fields.DatetimeField()
    platform = fields.CharField(max_length=16)

    class Meta:
        default_connection = "default"
        table = "builds"
        indexes = (("bundle_id", "created_at"),)

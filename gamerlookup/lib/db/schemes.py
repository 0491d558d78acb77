from enum import Enum

from tortoise import fields, models


class PlatformEnum(str, Enum):
    STEAM = "steam"
    PSN = "playstation"
    XBOX = "xbox"


class QualificationStatusEnum(str, Enum):
    PENDING = "pending"
    AUTHENTIC = "authentic"
    AUTHENTIC_SCRAPED = "authentic (scraped)"
    PARTIAL = "partial — platform limitation"


class ProfileSnapshot(models.Model):
    id = fields.IntField(primary_key=True, unique=True)
    platform = fields.CharEnumField(PlatformEnum, null=False, max_length=20)
    lookup_key = fields.CharField(max_length=255, null=False, db_index=True)
    platform_id = fields.CharField(max_length=255, null=False)
    display_name = fields.CharField(max_length=255, null=False)
    total_games = fields.IntField(default=0)
    total_hours = fields.IntField(default=0)
    data_source = fields.CharField(max_length=64, null=False)
    qualification_status = fields.CharEnumField(QualificationStatusEnum, null=False, max_length=40)
    qualification_reason = fields.TextField(null=True)
    resolved_at = fields.DatetimeField(null=False)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "profile_snapshot"


class GameActivity(models.Model):
    id = fields.IntField(primary_key=True, unique=True)
    snapshot = fields.ForeignKeyField("models.ProfileSnapshot", related_name="games",
                                      on_delete=fields.CASCADE, null=False)
    position = fields.IntField(null=False)
    name = fields.CharField(max_length=255, null=False)
    hours_played = fields.IntField(null=True)
    last_played = fields.DatetimeField(null=True)
    recent_hours = fields.IntField(null=True)

    class Meta:
        table = "game_activity"
        unique_together = (("snapshot", "position"),)

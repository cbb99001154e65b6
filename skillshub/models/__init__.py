from skillshub.models.custom_target import CustomTarget
from skillshub.models.remote_host import RemoteHost
from skillshub.models.setting import Setting
from skillshub.models.skill import ManagedSkill
from skillshub.models.target import SkillTarget

__all__ = ["CustomTarget", "ManagedSkill", "RemoteHost", "Setting", "SkillTarget"]

"""Database models."""
from assethub.models.user import User
from assethub.models.client import Client
from assethub.models.asset import Asset, AssetLabel, AssetType, LabelKind, ProcessingStatus

__all__ = ["User", "Client", "Asset", "AssetLabel", "AssetType", "LabelKind", "ProcessingStatus"]

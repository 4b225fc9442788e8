"""Projection of source entities onto search index documents."""

from typing import Any

from index_sync.models.entity import DripList, Entity, Project
from index_sync.storage.search_index import IndexSettings, TypoTolerance

PRIMARY_KEY = "id"

DRIP_LISTS_SETTINGS = IndexSettings(
    searchable_attributes=[
        "name",
        "entityId",
        "ownerAddress",
        "ownerAccountId",
        "description",
        "chain",
    ],
    distinct_attribute="id",
    filterable_attributes=["name", "chain", "ownerAddress", "isVisible"],
    displayed_attributes=[
        "name",
        "id",
        "entityId",
        "type",
        "description",
        "ownerAddress",
        "ownerAccountId",
        "chain",
        "isVisible",
    ],
    typo_tolerance=TypoTolerance(
        disable_on_attributes=["entityId", "ownerAccountId", "ownerAddress"]
    ),
)

PROJECTS_SETTINGS = IndexSettings(
    searchable_attributes=[
        "entityId",
        "name",
        "url",
        "ownerAddress",
        "ownerAccountId",
        "avatarCid",
        "emoji",
        "color",
        "chain",
        "ownerName",
        "repoName",
        "verificationStatus",
    ],
    distinct_attribute="id",
    filterable_attributes=["name", "chain", "ownerAddress", "isVisible", "verificationStatus"],
    displayed_attributes=[
        "id",
        "entityId",
        "name",
        "type",
        "description",
        "ownerAddress",
        "ownerAccountId",
        "url",
        "avatarCid",
        "emoji",
        "color",
        "chain",
        "ownerName",
        "repoName",
        "isVisible",
        "verificationStatus",
    ],
    typo_tolerance=TypoTolerance(
        disable_on_attributes=["entityId", "ownerAccountId", "ownerAddress", "url"]
    ),
)


def document_id(entity: Entity) -> str:
    """Primary key of an entity's document; the same id may exist on several chains."""
    return f"{entity.chain.value}-{entity.id}"


def split_project_name(name: str | None) -> tuple[str | None, str | None]:
    """
    Split an ``owner/repo`` project name into its first two segments.

    Args:
        name: Project name as stored in the source

    Returns:
        Tuple of (owner name, repository name); parts that are missing are None
    """
    if not name:
        return None, None
    parts = name.split("/")
    owner = parts[0] or None
    repo = (parts[1] or None) if len(parts) > 1 else None
    return owner, repo


def to_drip_list_document(drip_list: DripList) -> dict[str, Any]:
    return {
        "id": document_id(drip_list),
        "entityId": drip_list.id,
        "name": drip_list.name,
        "type": "drip_list",
        "description": drip_list.description,
        "ownerAddress": drip_list.owner_address,
        "ownerAccountId": drip_list.owner_account_id,
        "chain": drip_list.chain.value,
        "isVisible": drip_list.is_visible,
    }


def to_project_document(project: Project) -> dict[str, Any]:
    owner_name, repo_name = split_project_name(project.name)
    return {
        "id": document_id(project),
        "entityId": project.id,
        "name": project.name,
        "type": "project",
        "description": project.description,
        "ownerAddress": project.owner_address,
        "ownerAccountId": project.owner_account_id,
        "url": project.url,
        "avatarCid": project.avatar_cid,
        "emoji": project.emoji,
        "color": project.color,
        "chain": project.chain.value,
        "ownerName": owner_name,
        "repoName": repo_name,
        "isVisible": project.is_visible,
        "verificationStatus": project.verification_status,
    }

"""
Profiles, capabilities, posts and file metadata.
"""

import pytest

from memberships import config
from memberships.errors import (
    ConflictError,
    MissingCapabilityError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from memberships.models import Capability, Visibility


def _file(**overrides):
    spec = {
        "file_name": "notes.pdf",
        "file_size": 1024,
        "mime_type": "application/pdf",
        "storage_path": "alice/notes.pdf",
    }
    spec.update(overrides)
    return spec


# ----- Profiles -----

@pytest.mark.asyncio
async def test_register_profile_defaults(services):
    profile = await services.profiles.register_profile("dave", "dave")

    assert profile.display_name == "dave"
    assert profile.capabilities == frozenset({Capability.MEMBER})
    assert await services.profiles.has_capability("dave", Capability.MEMBER)
    assert not await services.profiles.has_capability("dave", Capability.CREATOR)


@pytest.mark.asyncio
async def test_register_profile_rejects_taken_handle(services, alice):
    with pytest.raises(ConflictError) as exc_info:
        await services.profiles.register_profile("alice-2", "alice")

    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_register_profile_requires_handle(services):
    with pytest.raises(ValidationError):
        await services.profiles.register_profile("dave", "  ")


@pytest.mark.asyncio
async def test_get_creator_by_handle_only_finds_creators(services, alice, bob):
    assert (await services.profiles.get_creator_by_handle("alice")).user_id == "alice"

    with pytest.raises(NotFoundError):
        await services.profiles.get_creator_by_handle("bob")


@pytest.mark.asyncio
async def test_update_profile(services, bob):
    updated = await services.profiles.update_profile("bob", display_name=" Bob B. ", bio="Listener")

    assert updated.display_name == "Bob B."
    assert (await services.profiles.get_profile("bob")).bio == "Listener"

    with pytest.raises(ValidationError):
        await services.profiles.update_profile("bob", display_name="")
    with pytest.raises(NotFoundError):
        await services.profiles.update_profile("nobody", bio="x")


@pytest.mark.asyncio
async def test_grant_capability(services, bob):
    await services.profiles.grant_capability("bob", Capability.CREATOR)

    assert (await services.profiles.get_profile("bob")).capabilities == frozenset(
        {Capability.CREATOR, Capability.MEMBER}
    )


@pytest.mark.asyncio
async def test_unknown_user_has_no_capabilities(services):
    assert not await services.profiles.has_capability("ghost", Capability.MEMBER)
    assert not await services.profiles.has_capability(None, Capability.MEMBER)
    with pytest.raises(MissingCapabilityError):
        await services.profiles.require_capability("ghost", Capability.MEMBER)


@pytest.mark.asyncio
async def test_unknown_capability_is_a_validation_error(services, bob):
    with pytest.raises(ValidationError) as exc_info:
        await services.profiles.grant_capability("bob", "admin")
    assert exc_info.value.details["field"] == "capability"

    with pytest.raises(ValidationError):
        await services.profiles.register_profile("dave", "dave", capabilities=["member", "admin"])
    with pytest.raises(ValidationError):
        await services.profiles.require_capability("bob", "admin")
    with pytest.raises(NotFoundError):
        await services.profiles.get_profile("dave")


# ----- Posts -----

@pytest.mark.asyncio
async def test_create_post_defaults_to_public(services, alice):
    post = await services.content.create_post("alice", {"title": "Hello"})

    assert post.visibility == Visibility.PUBLIC
    assert post.min_tier_rank == 0
    assert (await services.content.get_post(post.id)).title == "Hello"


@pytest.mark.asyncio
async def test_create_post_requires_creator(services, bob):
    with pytest.raises(MissingCapabilityError):
        await services.content.create_post("bob", {"title": "Hello"})


@pytest.mark.parametrize(
    "spec",
    [
        {"title": ""},
        {"title": "Bad rank", "min_tier_rank": -1},
        {"title": "Bad visibility", "visibility": "friends-only"},
        {"title": "Unknown field", "creator_id": "bob"},
    ],
)
@pytest.mark.asyncio
async def test_create_post_rejects_invalid_spec(services, alice, spec):
    with pytest.raises(ValidationError):
        await services.content.create_post("alice", spec)


@pytest.mark.asyncio
async def test_list_posts_public_only(services, alice):
    await services.content.create_post("alice", {"title": "Open"})
    await services.content.create_post(
        "alice", {"title": "Closed", "visibility": "tier-restricted", "min_tier_rank": 1}
    )

    all_titles = {p.title for p in await services.content.list_posts("alice")}
    public_titles = [p.title for p in await services.content.list_posts("alice", public_only=True)]

    assert all_titles == {"Open", "Closed"}
    assert public_titles == ["Open"]


@pytest.mark.asyncio
async def test_update_post_owner_only(services, alice, carol):
    post = await services.content.create_post("alice", {"title": "Draft"})

    updated = await services.content.update_post(
        post.id, "alice", {"visibility": "tier-restricted", "min_tier_rank": 2}
    )

    assert updated.visibility == Visibility.TIER_RESTRICTED
    assert updated.min_tier_rank == 2
    assert updated.title == "Draft"
    with pytest.raises(PermissionDeniedError):
        await services.content.update_post(post.id, "carol", {"title": "Mine now"})


@pytest.mark.asyncio
async def test_delete_post_removes_its_files(services, alice, carol):
    post = await services.content.create_post("alice", {"title": "Pack"})
    asset = await services.content.attach_file(post.id, "alice", _file())

    with pytest.raises(PermissionDeniedError):
        await services.content.delete_post(post.id, "carol")
    await services.content.delete_post(post.id, "alice")

    with pytest.raises(NotFoundError):
        await services.content.get_post(post.id)
    with pytest.raises(NotFoundError):
        await services.content.get_file(asset.id)


# ----- Files -----

@pytest.mark.asyncio
async def test_attach_and_list_files(services, alice):
    post = await services.content.create_post("alice", {"title": "Pack"})

    asset = await services.content.attach_file(post.id, "alice", _file())

    assert asset.uploaded_by == "alice"
    assert [f.id for f in await services.content.list_files(post.id)] == [asset.id]


@pytest.mark.asyncio
async def test_attach_file_owner_only(services, alice, carol):
    post = await services.content.create_post("alice", {"title": "Pack"})

    with pytest.raises(PermissionDeniedError):
        await services.content.attach_file(post.id, "carol", _file())
    with pytest.raises(NotFoundError):
        await services.content.attach_file("no-such-post", "alice", _file())


@pytest.mark.parametrize(
    "overrides",
    [
        {"file_size": config.MAX_FILE_SIZE_BYTES + 1},
        {"file_size": 0},
        {"mime_type": "application/x-msdownload"},
        {"file_name": "  "},
    ],
)
@pytest.mark.asyncio
async def test_attach_file_rejects_invalid_metadata(services, alice, overrides):
    post = await services.content.create_post("alice", {"title": "Pack"})

    with pytest.raises(ValidationError):
        await services.content.attach_file(post.id, "alice", _file(**overrides))

    assert await services.content.list_files(post.id) == []


@pytest.mark.asyncio
async def test_delete_file(services, alice, carol):
    post = await services.content.create_post("alice", {"title": "Pack"})
    asset = await services.content.attach_file(post.id, "alice", _file())

    with pytest.raises(PermissionDeniedError):
        await services.content.delete_file(asset.id, "carol")
    await services.content.delete_file(asset.id, "alice")

    assert await services.content.list_files(post.id) == []

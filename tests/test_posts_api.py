import pytest

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
MISSING_ID = "01ARZ3NDEKTSV4RRFFQ69G5FAV"


def image(data=PNG, name="pic.png", content_type="image/png"):
    return {"media": (name, data, content_type)}


async def create_post(client, headers, text=None, files=None):
    data = {"text": text} if text is not None else {}
    response = await client.post("/posts", data=data, files=files, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_text_post(api_client, alice):
    post = await create_post(api_client, alice, text="Hello World! #newpost")

    assert post["text"] == "Hello World! #newpost"
    assert post["mediaUrl"] is None
    assert post["mediaType"] is None
    assert post["likes"] == 0
    assert post["replies"] == 0
    assert post["likedBySelf"] is False
    assert post["creator"]["id"] == "alice-id"
    assert post["creator"]["username"] == "alice"
    assert post["creator"]["displayName"] == "Alice Anderson"
    assert len(post["id"]) == 26


@pytest.mark.asyncio
async def test_create_requires_authentication(api_client):
    response = await api_client.post("/posts", data={"text": "anonymous"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_media_only_post(api_client, alice, storage):
    post = await create_post(api_client, alice, files=image())

    assert post["text"] is None
    assert post["mediaUrl"].startswith("https://storage.test/murmur-media/")
    assert post["mediaType"] == "image/png"
    assert len(storage.objects) == 1


@pytest.mark.asyncio
async def test_create_rejects_non_image_media(api_client, alice, storage):
    response = await api_client.post(
        "/posts",
        files=image(b"%PDF-1.4", "doc.pdf", "application/pdf"),
        headers=alice,
    )
    assert response.status_code == 400
    assert storage.objects == {}


@pytest.mark.asyncio
async def test_create_rejects_oversized_media(api_client, alice, storage):
    too_big = b"\x00" * (2 * 1024 * 1024 + 1)
    response = await api_client.post("/posts", files=image(too_big), headers=alice)
    assert response.status_code == 400
    assert storage.objects == {}


@pytest.mark.asyncio
async def test_create_without_text_or_media_is_invalid(api_client, alice):
    response = await api_client.post("/posts", data={"text": ""}, headers=alice)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_liked_by_self_depends_on_viewer(api_client, alice, bob):
    post = await create_post(api_client, alice, text="viewer test")

    anonymous = await api_client.get(f"/posts/{post['id']}")
    assert anonymous.status_code == 200
    assert anonymous.json()["likedBySelf"] is None

    own = await api_client.get(f"/posts/{post['id']}", headers=alice)
    assert own.json()["likedBySelf"] is False

    other = await api_client.get(f"/posts/{post['id']}", headers=bob)
    assert other.json()["likedBySelf"] is False


@pytest.mark.asyncio
async def test_get_unknown_post(api_client):
    response = await api_client.get(f"/posts/{MISSING_ID}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_get_with_malformed_id(api_client):
    response = await api_client.get("/posts/not-a-ulid")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_replace_post(api_client, alice, storage):
    post = await create_post(api_client, alice, text="first", files=image())
    old_media = post["mediaUrl"].rsplit("/", 1)[-1]

    response = await api_client.put(
        f"/posts/{post['id']}", data={"text": "second"}, headers=alice
    )
    assert response.status_code == 200
    replaced = response.json()
    assert replaced["text"] == "second"
    # Old media goes away even though no new media was sent
    assert replaced["mediaUrl"] is None
    assert old_media in storage.deleted


@pytest.mark.asyncio
async def test_replace_with_new_media(api_client, alice, storage):
    post = await create_post(api_client, alice, text="with picture")

    response = await api_client.put(
        f"/posts/{post['id']}", data={"text": "new picture"}, files=image(), headers=alice
    )
    assert response.status_code == 200
    assert response.json()["mediaUrl"] is not None
    assert len(storage.objects) == 1


@pytest.mark.asyncio
async def test_replace_errors(api_client, alice, bob):
    post = await create_post(api_client, alice, text="mine")

    forbidden = await api_client.put(f"/posts/{post['id']}", data={"text": "x"}, headers=bob)
    assert forbidden.status_code == 403

    empty = await api_client.put(f"/posts/{post['id']}", data={}, headers=alice)
    assert empty.status_code == 400

    missing = await api_client.put(f"/posts/{MISSING_ID}", data={"text": "x"}, headers=alice)
    assert missing.status_code == 404

    anonymous = await api_client.put(f"/posts/{post['id']}", data={"text": "x"})
    assert anonymous.status_code == 401


@pytest.mark.asyncio
async def test_patch_text(api_client, alice):
    post = await create_post(api_client, alice, text="before")

    response = await api_client.patch(f"/posts/{post['id']}", json={"text": "after"}, headers=alice)
    assert response.status_code == 204

    fetched = await api_client.get(f"/posts/{post['id']}")
    assert fetched.json()["text"] == "after"


@pytest.mark.asyncio
async def test_patch_without_text_is_a_no_op(api_client, alice):
    post = await create_post(api_client, alice, text="unchanged")

    response = await api_client.patch(f"/posts/{post['id']}", json={}, headers=alice)
    assert response.status_code == 204

    fetched = await api_client.get(f"/posts/{post['id']}")
    assert fetched.json()["text"] == "unchanged"


@pytest.mark.asyncio
async def test_patch_empty_text_removes_it_only_when_media_remains(api_client, alice):
    text_only = await create_post(api_client, alice, text="only text")
    response = await api_client.patch(f"/posts/{text_only['id']}", json={"text": ""}, headers=alice)
    assert response.status_code == 400

    with_media = await create_post(api_client, alice, text="text and media", files=image())
    response = await api_client.patch(f"/posts/{with_media['id']}", json={"text": ""}, headers=alice)
    assert response.status_code == 204

    fetched = await api_client.get(f"/posts/{with_media['id']}")
    assert fetched.json()["text"] is None
    assert fetched.json()["mediaUrl"] == with_media["mediaUrl"]


@pytest.mark.asyncio
async def test_patch_errors(api_client, alice, bob):
    post = await create_post(api_client, alice, text="mine")

    forbidden = await api_client.patch(f"/posts/{post['id']}", json={"text": "x"}, headers=bob)
    assert forbidden.status_code == 403

    missing = await api_client.patch(f"/posts/{MISSING_ID}", json={"text": "x"}, headers=alice)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_delete_post(api_client, alice, bob):
    post = await create_post(api_client, alice, text="short lived")

    forbidden = await api_client.delete(f"/posts/{post['id']}", headers=bob)
    assert forbidden.status_code == 403

    response = await api_client.delete(f"/posts/{post['id']}", headers=alice)
    assert response.status_code == 204

    assert (await api_client.get(f"/posts/{post['id']}")).status_code == 404
    assert (await api_client.delete(f"/posts/{post['id']}", headers=alice)).status_code == 404

    search = await api_client.get("/posts")
    assert search.json()["count"] == 0


@pytest.mark.asyncio
async def test_replace_media(api_client, alice, storage):
    post = await create_post(api_client, alice, text="media soon")

    response = await api_client.put(f"/posts/{post['id']}/media", files=image(), headers=alice)
    assert response.status_code == 200
    url = response.text
    assert url.startswith("https://storage.test/")

    fetched = await api_client.get(f"/posts/{post['id']}")
    assert fetched.json()["mediaUrl"] == url
    assert fetched.json()["mediaType"] == "image/png"

    second = await api_client.put(f"/posts/{post['id']}/media", files=image(), headers=alice)
    assert second.text != url
    assert url.rsplit("/", 1)[-1] in storage.deleted


@pytest.mark.asyncio
async def test_replace_media_requires_an_image(api_client, alice):
    post = await create_post(api_client, alice, text="text")

    missing = await api_client.put(f"/posts/{post['id']}/media", headers=alice)
    assert missing.status_code == 400

    wrong_type = await api_client.put(
        f"/posts/{post['id']}/media",
        files=image(b"plain", "notes.txt", "text/plain"),
        headers=alice,
    )
    assert wrong_type.status_code == 400


@pytest.mark.asyncio
async def test_delete_media(api_client, alice, bob):
    post = await create_post(api_client, alice, text="text and media", files=image())

    forbidden = await api_client.delete(f"/posts/{post['id']}/media", headers=bob)
    assert forbidden.status_code == 403

    response = await api_client.delete(f"/posts/{post['id']}/media", headers=alice)
    assert response.status_code == 204

    fetched = await api_client.get(f"/posts/{post['id']}")
    assert fetched.json()["mediaUrl"] is None
    assert fetched.json()["mediaType"] is None


@pytest.mark.asyncio
async def test_delete_only_media_of_textless_post(api_client, alice):
    post = await create_post(api_client, alice, files=image())

    response = await api_client.delete(f"/posts/{post['id']}/media", headers=alice)
    assert response.status_code == 400

    fetched = await api_client.get(f"/posts/{post['id']}")
    assert fetched.json()["mediaUrl"] == post["mediaUrl"]


@pytest.mark.asyncio
async def test_pagination_links(api_client, alice):
    for i in range(3):
        await create_post(api_client, alice, text=f"post {i}")

    first = (await api_client.get("/posts?offset=0&limit=2")).json()
    assert first["count"] == 3
    assert len(first["data"]) == 2
    assert first["next"] is not None
    assert "offset=2" in first["next"]
    assert "limit=2" in first["next"]
    assert first["previous"] is None

    second = (await api_client.get("/posts?offset=2&limit=2")).json()
    assert len(second["data"]) == 1
    assert second["next"] is None
    assert second["previous"] is not None
    assert "offset=0" in second["previous"]

    ids = [p["id"] for p in first["data"] + second["data"]]
    assert ids == sorted(ids, reverse=True)


@pytest.mark.asyncio
async def test_search_filters(api_client, alice, bob):
    cats = await create_post(api_client, alice, text="I love #Cats")
    dogs = await create_post(api_client, bob, text="Dogs are great #dogs")
    plain = await create_post(api_client, bob, text="nothing to see")

    async def ids(query):
        response = await api_client.get(f"/posts{query}")
        assert response.status_code == 200
        return {p["id"] for p in response.json()["data"]}

    assert await ids("?text=LOVE") == {cats["id"]}
    assert await ids("?tags=cats") == {cats["id"]}
    assert await ids("?tags=cats&tags=dogs") == {cats["id"], dogs["id"]}
    assert await ids("?creators=bob-id") == {dogs["id"], plain["id"]}
    assert await ids("?creators=bob-id&text=great") == {dogs["id"]}

    await api_client.put(f"/posts/{plain['id']}/likes", headers=alice)
    assert await ids("?likedBy=alice-id") == {plain["id"]}
    assert await ids("?likedBy=alice-id&likedBy=bob-id") == {plain["id"]}

    newest_first = sorted([cats["id"], dogs["id"], plain["id"]], reverse=True)
    assert await ids(f"?olderThan={newest_first[0]}") == set(newest_first[1:])
    assert await ids(f"?newerThan={newest_first[-1]}") == set(newest_first[:-1])


@pytest.mark.asyncio
async def test_search_links_keep_filters(api_client, alice):
    for i in range(2):
        await create_post(api_client, alice, text=f"#tagged {i}")

    page = (await api_client.get("/posts?limit=1&tags=tagged&creators=alice-id")).json()
    assert page["count"] == 2
    assert "tags=tagged" in page["next"]
    assert "creators=alice-id" in page["next"]


@pytest.mark.asyncio
async def test_search_rejects_malformed_ulid(api_client):
    response = await api_client.get("/posts?newerThan=nope")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_search_excludes_replies(api_client, alice):
    post = await create_post(api_client, alice, text="parent")
    await api_client.post(f"/posts/{post['id']}/replies", data={"text": "child"}, headers=alice)

    page = (await api_client.get("/posts")).json()
    assert page["count"] == 1
    assert page["data"][0]["replies"] == 1

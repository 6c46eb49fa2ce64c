import pytest
from sacrud import DEFAULT
from models import DATA, Item, Author, Book, Setting, visible

ALL_METHODS = {"find": DEFAULT, "findById": DEFAULT, "create": DEFAULT, "save": DEFAULT, "remove": DEFAULT}


@pytest.fixture
def client(expose):
    return expose(Item, ALL_METHODS)


def get_names(response):
    return [doc["name"] for doc in response.get_json()]


def test_find(client):
    response = client.get("/items")
    assert response.status_code == 200
    assert response.headers["X-Total-Count"] == "10"
    assert response.get_json() == [visible(doc) for doc in DATA]


def test_find_headers(client):
    response = client.get("/items")
    assert response.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"
    assert response.headers["Pragma"] == "no-cache"
    assert response.headers["Expires"] == "0"
    assert response.headers["Content-Type"] == "application/json; charset=UTF-8"


def test_find_search(client):
    response = client.get("/items", query_string={"test": "true"})
    assert response.headers["X-Total-Count"] == "5"
    assert get_names(response) == ["Dylan", "Jack", "Eve", "Ivan", "Heidi"]

    response = client.get("/items", query_string={"_rank[$gte]": "8"})
    assert get_names(response) == ["Jack", "Carol", "Grace"]

    response = client.get("/items", query_string={"$or": '[{"name": "Bob"}, {"_rank": {"$lt": 2}}]'})
    assert get_names(response) == ["Alice", "Bob"]


def test_find_ignores_hidden_filters(client):
    response = client.get("/items", query_string={"hidden": "h1"})
    assert response.headers["X-Total-Count"] == "10"

    response = client.get("/items", query_string={"$and": '[{"_secret": "s1"}, {"name": "Bob"}]'})
    assert get_names(response) == ["Bob"]


def test_find_unknown_attribute(client):
    response = client.get("/items", query_string={"nope": "1"})
    assert response.status_code == 200
    assert response.headers["X-Total-Count"] == "0"
    assert response.get_json() == []


def test_find_skip_limit(client):
    response = client.get("/items", query_string={"$skip": "2", "$limit": "3"})
    assert response.headers["X-Total-Count"] == "10"
    assert get_names(response) == ["Jack", "Bob", "Eve"]

    response = client.get("/items", query_string={"$skip": "9", "$limit": "3"})
    assert get_names(response) == ["Grace"]


@pytest.mark.parametrize(
    "sort, expected",
    [
        ("name", ["Alice", "Bob", "Carol", "Dylan", "Eve", "Frank", "Grace", "Heidi", "Ivan", "Jack"]),
        ("-_rank", ["Grace", "Carol", "Jack", "Frank", "Heidi", "Bob", "Ivan", "Dylan", "Eve", "Alice"]),
        ("test -_rank", ["Grace", "Carol", "Frank", "Bob", "Alice", "Jack", "Heidi", "Ivan", "Dylan", "Eve"]),
        ("-hidden", ["Dylan", "Alice", "Jack", "Bob", "Eve", "Carol", "Ivan", "Frank", "Heidi", "Grace"]),
    ],
)
def test_find_sort(client, sort, expected):
    response = client.get("/items", query_string={"$sort": sort})
    assert get_names(response) == expected


def test_find_select(client):
    response = client.get("/items", query_string={"$select": "name", "$limit": "2"})
    assert response.get_json() == [{"id": 1, "name": "Dylan"}, {"id": 2, "name": "Alice"}]

    response = client.get("/items", query_string={"$select": "-id name", "$limit": "2"})
    assert response.get_json() == [{"name": "Dylan"}, {"name": "Alice"}]

    response = client.get("/items", query_string={"$select": "name hidden _secret", "$limit": "1"})
    assert response.get_json() == [{"id": 1, "name": "Dylan"}]

    response = client.get("/items", query_string={"$select": "hidden", "$limit": "1"})
    assert response.get_json() == [visible(DATA[0])]


def test_find_populate(client):
    response = client.get("/items", query_string={"$populate": "related[name]", "$limit": "4"})
    related = [doc["related"] for doc in response.get_json()]
    assert related == [{"id": 1, "name": "Dylan"}, {"id": 1, "name": "Dylan"}, None, {"id": 2, "name": "Alice"}]


def test_find_limit_without_number(client):
    response = client.get("/items", query_string={"$limit": "ten"})
    assert response.status_code == 200
    assert response.headers["X-Total-Count"] == "10"
    assert response.get_json() == [visible(doc) for doc in DATA]


@pytest.mark.parametrize("query", [{"$skip": "two"}, {"$limit": "-1"}, {"$or": "[{broken"}, {"_rank": "high"}])
def test_find_invalid_query(client, query):
    response = client.get("/items", query_string=query)
    assert response.status_code == 400
    assert response.get_json()["message"].startswith("Invalid query: ")
    assert response.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"
    assert response.headers["Pragma"] == "no-cache"
    assert response.headers["Expires"] == "0"


def test_find_split_count_headers(app, client):
    app.config["COUNT_HEADER_STYLE"] = "split"
    response = client.get("/items", query_string={"$limit": "3"})
    assert response.headers["X-Total-Results"] == "10"
    assert response.headers["X-Max-Results"] == "3"
    assert "X-Total-Count" not in response.headers

    response = client.get("/items", query_string={"test": "true"})
    assert response.headers["X-Max-Results"] == "5"


def test_find_by_id(client):
    response = client.get("/items/2")
    assert response.status_code == 200
    assert response.headers["X-Total-Count"] == "1"
    assert response.get_json() == visible(DATA[1])


def test_find_by_id_not_found(client):
    for object_id in ("1000", "abc"):
        response = client.get(f"/items/{object_id}")
        assert response.status_code == 204
        assert response.headers["X-Total-Count"] == "0"
        assert response.data == b""


def test_find_by_id_populate(client):
    response = client.get("/items/1", query_string={"$populate": "related[name]"})
    assert response.get_json() == dict(visible(DATA[0]), related={"id": 1, "name": "Dylan"})

    response = client.get("/items/4", query_string={"$populate": "related:related[name]", "$select": "name"})
    assert response.get_json() == {
        "id": 4,
        "name": "Bob",
        "related": dict(visible(DATA[1]), related={"id": 1, "name": "Dylan"}),
    }


def test_populate_hidden_relationship(expose):
    client = expose(Book, {"findById": DEFAULT})
    response = client.get("/books/1", query_string={"$populate": "_reviewer author[name password]"})
    assert response.get_json() == {
        "id": 1,
        "title": "The Hobbit",
        "pages": 310,
        "author_id": 1,
        "reviewer_id": 2,
        "author": {"id": 1, "name": "Tolkien"},
    }


def test_create(client, session):
    response = client.post("/items", json={"id": 99, "name": "Zed", "test": True, "hidden": "x", "_secret": "y", "extra": 1})
    assert response.status_code == 201
    assert response.get_json() == {"id": 11, "name": "Zed", "test": True, "_rank": None, "related_id": None}

    item = session.get(Item, 11)
    assert item.name == "Zed"
    assert item.hidden is None
    assert item._secret is None
    assert session.get(Item, 99) is None


def test_create_validation_error(client, session):
    response = client.post("/items", json={"test": True})
    assert response.status_code == 400
    assert response.headers.getlist("X-Error-Message") == ["Path `name` is required."]
    error = response.get_json()["error"]
    assert error["name"] == "ValidationError"
    assert error["errors"]["name"] == {"message": "Path `name` is required.", "path": "name", "kind": "required"}
    assert session.query(Item).count() == 10


def test_create_multiple_validation_errors(expose, session):
    client = expose(Book, {"create": DEFAULT})
    response = client.post("/books", json={"pages": 0})
    assert response.status_code == 400
    assert sorted(response.headers.getlist("X-Error-Message")) == ["A book needs at least one page", "Path `title` is required."]
    assert session.query(Book).count() == 3


def test_put_overwrites(client, session):
    response = client.put("/items/1", json={"name": "New Name", "_id": 5})
    assert response.status_code == 200
    assert response.get_json() == {"id": 1, "name": "New Name", "test": None, "_rank": None, "related_id": None}

    item = session.get(Item, 1)
    assert item.test is None
    assert item.hidden == "h1"


def test_put_select(client):
    response = client.put("/items/1", json={"name": "New Name"}, query_string={"$select": "name"})
    assert response.get_json() == {"id": 1, "name": "New Name"}


def test_patch_updates(client, session):
    response = client.patch("/items/1", json={"test": False, "hidden": "leak", "id": 42})
    assert response.status_code == 200
    assert response.get_json() == dict(visible(DATA[0]), test=False)

    item = session.get(Item, 1)
    assert item.hidden == "h1"
    assert session.get(Item, 42) is None


def test_save_validation_error(client, session):
    response = client.put("/items/1", json={"test": True})
    assert response.status_code == 400
    assert response.headers["X-Error-Message"] == "Path `name` is required."

    response = client.patch("/items/1", json={"_rank": "first"})
    assert response.status_code == 400
    assert response.get_json()["error"]["errors"]["_rank"]["kind"] == "CastError"
    assert session.get(Item, 1).name == "Dylan"


def test_save_not_found(client):
    assert client.put("/items/1000", json={"name": "x"}).status_code == 204
    assert client.patch("/items/1000", json={"name": "x"}).status_code == 204


def test_remove(client, session):
    response = client.delete("/items/10")
    assert response.status_code == 200
    assert response.get_json() == visible(DATA[9])
    assert session.get(Item, 10) is None

    response = client.delete("/items/10")
    assert response.status_code == 204
    assert response.data == b""


def test_disabled_operations(expose):
    client = expose(Item, {"find": DEFAULT, "remove": False})
    assert client.get("/items").status_code == 200
    assert client.post("/items", json={"name": "x"}).status_code == 405
    assert client.get("/items/1").status_code == 404
    assert client.delete("/items/1").status_code == 404


def test_instance_routes_only(expose):
    client = expose(Item, {"findById": DEFAULT})
    assert client.get("/items/1").status_code == 200
    assert client.delete("/items/1").status_code == 405
    assert client.get("/items").status_code == 404


def test_custom_path(expose):
    client = expose(Author, {"find": DEFAULT, "findById": DEFAULT}, "/writers")
    response = client.get("/writers")
    assert response.get_json() == [{"id": 1, "name": "Tolkien", "country": "UK"}, {"id": 2, "name": "Pratchett", "country": "BE"}]
    assert client.get("/writers/2").get_json()["name"] == "Pratchett"
    assert client.get("/authors").status_code == 404


def test_expose_invalid(api):
    with pytest.raises(TypeError):
        api.expose_object(object, {"find": DEFAULT})
    with pytest.raises(ValueError):
        api.expose_object(Item, {"list": DEFAULT})
    with pytest.raises(TypeError):
        api.expose_object(Item, {"find": "custom"})


def test_override(expose):
    calls = []

    def handler(ctx, next):
        calls.append((ctx.method, ctx.object_id))
        ctx.res.status = 200
        ctx.res.body = {"method": ctx.method}
        return next()

    client = expose(Item, dict.fromkeys(ALL_METHODS, handler))
    for method, url in [("get", "/items"), ("get", "/items/3"), ("post", "/items"), ("put", "/items/3"), ("patch", "/items/3"), ("delete", "/items/3")]:
        response = getattr(client, method)(url, json={"name": "x"} if method != "get" else None)
        assert response.status_code == 200
        assert response.get_json() == {"method": method.upper()}
        assert response.headers["Pragma"] == "no-cache"

    assert calls == [("GET", None), ("GET", "3"), ("POST", None), ("PUT", "3"), ("PATCH", "3"), ("DELETE", "3")]


def test_override_sees_scrubbed_request(expose):
    seen = {}

    def handler(ctx, next):
        seen["body"] = ctx.body
        seen["query"] = ctx.query
        ctx.res.status = 204
        return next()

    client = expose(Item, {"create": handler})
    client.post("/items", json={"id": 5, "name": "x", "hidden": 1}, query_string={"_secret": "s", "test": "1", "$limit": "1"})
    assert seen == {"body": {"name": "x"}, "query": {"test": "1"}}


def test_override_before_default(expose):
    def only_true(ctx, next):
        ctx.query["test"] = "true"
        return next()

    def upper(ctx, next):
        for doc in ctx.res.body:
            doc["name"] = doc["name"].upper()
        return next()

    client = expose(Item, {"find": [only_true, DEFAULT, upper]})
    response = client.get("/items")
    assert response.headers["X-Total-Count"] == "5"
    assert get_names(response) == ["DYLAN", "JACK", "EVE", "IVAN", "HEIDI"]


def test_override_cancels_create(expose, session):
    def dry_run(ctx, next):
        ctx.res.body = ctx.res.body.to_dict()
        return next()

    client = expose(Item, {"create": [DEFAULT, dry_run]})
    response = client.post("/items", json={"name": "Zed"})
    assert response.status_code == 201
    assert response.get_json() == {"id": None, "name": "Zed", "test": None, "_rank": None, "related_id": None}
    assert session.query(Item).count() == 10


def test_override_modifies_save(expose, session):
    def stamp(ctx, next):
        ctx.res.body.test = True
        return next()

    client = expose(Item, {"save": [DEFAULT, stamp]})
    response = client.patch("/items/2", json={"name": "Alicia"})
    assert response.get_json() == dict(visible(DATA[1]), name="Alicia", test=True)
    assert session.get(Item, 2).test is True


def test_override_writes_column_named_like_document_attribute(expose, session):
    def rename(ctx, next):
        ctx.res.body.fields = "name test"
        return next()

    client = expose(Setting, {"create": DEFAULT, "save": [DEFAULT, rename]})
    assert client.post("/settings", json={"fields": "name"}).status_code == 201
    response = client.patch("/settings/1", json={"session": "s1"})
    assert response.get_json() == {"id": 1, "instance": None, "session": "s1", "fields": "name test"}
    assert session.get(Setting, 1).fields == "name test"


def test_override_reads_response_headers(expose):
    def envelope(ctx, next):
        ctx.res.body = {"total": int(ctx.res.get("X-Total-Count")), "cache": ctx.res.get("pragma"), "items": ctx.res.body}
        return next()

    client = expose(Item, {"find": [DEFAULT, envelope]})
    response = client.get("/items", query_string={"$limit": "2", "$select": "name"})
    assert response.get_json() == {
        "total": 10,
        "cache": "no-cache",
        "items": [{"id": 1, "name": "Dylan"}, {"id": 2, "name": "Alice"}],
    }


def test_override_cancels_remove(expose, session):
    def keep(ctx, next):
        ctx.res.body = {"kept": ctx.res.body.id}
        return next()

    client = expose(Item, {"remove": [DEFAULT, keep]})
    response = client.delete("/items/5")
    assert response.get_json() == {"kept": 5}
    assert session.get(Item, 5).name == "Eve"


def test_override_not_called_when_not_found(expose):
    def fail(ctx, next):  # pragma: no cover
        raise AssertionError("override called")

    client = expose(Item, {"save": [DEFAULT, fail], "remove": [DEFAULT, fail], "findById": [DEFAULT]})
    assert client.put("/items/1000", json={"name": "x"}).status_code == 204
    assert client.delete("/items/1000").status_code == 204


def test_next_called_twice(expose, app):
    def twice(ctx, next):
        next()
        return next()

    app.config["PROPAGATE_EXCEPTIONS"] = True
    client = expose(Item, {"find": twice})
    with pytest.raises(RuntimeError):
        client.get("/items")

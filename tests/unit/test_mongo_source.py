import pytest
from bson import ObjectId, json_util
from pymongo.errors import AutoReconnect

from docsync.core.exceptions import DocumentDecodeError
from docsync.knowledge.ingestion.fingerprint import fingerprint
from docsync.knowledge.ingestion.sources.mongo import MongoSource
from docsync.models.ingestion import IngestedDocument

from tests.conftest import StubMongoCollection

ID_A = ObjectId("65a000000000000000000001")
ID_B = ObjectId("65a000000000000000000002")


@pytest.fixture
def collection():
    return StubMongoCollection(
        [
            {"_id": ID_A, "name": "Alice", "city": "Oslo"},
            {"_id": ID_B, "name": "Bob", "orders": [1, 2]},
            {"_id": "legacy-key", "name": "Broken"},
        ]
    )


@pytest.fixture
def source(collection, chunker):
    return MongoSource(collection, chunker=chunker)


def test_source_id_names_database_and_collection(source):
    assert source.source_id == "MongoDB:shop/records"


@pytest.mark.asyncio
async def test_full_record_hash_and_invalid_ids_skipped(source, collection):
    documents = await source.get_new_or_modified_documents([])

    assert [doc.document_id for doc in documents] == [str(ID_A), str(ID_B)]
    assert documents[0].document_version == fingerprint(json_util.dumps(collection.records[0]))

    assert await source.get_new_or_modified_documents(documents) == []

    collection.records[0]["city"] = "Bergen"
    changed = await source.get_new_or_modified_documents(documents)
    assert [doc.document_id for doc in changed] == [str(ID_A)]


@pytest.mark.asyncio
async def test_cursor_failure_keeps_discovered_documents(source, collection):
    collection.error = AutoReconnect("connection reset")
    collection.fail_after = 1

    documents = await source.get_new_or_modified_documents([])

    assert [doc.document_id for doc in documents] == [str(ID_A)]


@pytest.mark.asyncio
async def test_deleted_records(source, collection):
    gone = str(ObjectId("65a000000000000000000009"))
    existing = [
        IngestedDocument(source_id=source.source_id, document_id=str(ID_A), document_version="v"),
        IngestedDocument(source_id=source.source_id, document_id=gone, document_version="v"),
    ]

    deleted = await source.get_deleted_documents(existing)

    assert [doc.document_id for doc in deleted] == [gone]


@pytest.mark.asyncio
async def test_deletion_skipped_when_listing_fails(source, collection):
    collection.error = AutoReconnect("connection reset")
    existing = [IngestedDocument(source_id=source.source_id, document_id="x", document_version="v")]

    assert await source.get_deleted_documents(existing) == []


@pytest.mark.asyncio
async def test_chunks_flatten_all_fields(source, collection):
    document = IngestedDocument(source_id=source.source_id, document_id=str(ID_B), document_version="v")

    chunks = await source.create_chunks_for_document(document)

    assert [chunk.text for chunk in chunks] == [f"_id: {ID_B} name: Bob", "orders: [1,2]"]
    assert collection.find_one_calls == [{"_id": ID_B}]


@pytest.mark.asyncio
async def test_invalid_object_id_is_a_decode_error(source, collection):
    document = IngestedDocument(source_id=source.source_id, document_id="legacy-key", document_version="v")

    with pytest.raises(DocumentDecodeError):
        await source.create_chunks_for_document(document)
    assert collection.find_one_calls == []


@pytest.mark.asyncio
async def test_missing_record_yields_no_chunks(source):
    document = IngestedDocument(
        source_id=source.source_id, document_id=str(ObjectId("65a000000000000000000009")), document_version="v"
    )

    assert await source.create_chunks_for_document(document) == []

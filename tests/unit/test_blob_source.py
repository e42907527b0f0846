from datetime import datetime, timezone

import pytest

from docsync.core.exceptions import DocumentDecodeError, ScopeViolationError, TransientSourceError
from docsync.knowledge.ingestion.sources.blob import BlobStorageSource
from docsync.models.ingestion import IngestedDocument


@pytest.fixture
def source(object_storage, chunker, stub_parser):
    return BlobStorageSource(object_storage, "tenant-a", chunker=chunker, parser=stub_parser)


def test_prefix_is_normalized_and_source_id_embeds_container(object_storage):
    source = BlobStorageSource(object_storage, "/tenant-a")
    assert source.directory_prefix == "tenant-a/"
    assert source.source_id == "BlobStorageSource:corpus"
    assert BlobStorageSource(object_storage, "").directory_prefix == ""


@pytest.mark.asyncio
async def test_first_run_reports_every_supported_blob(source, object_storage):
    stamps = [datetime(2024, 3, day, 12, 0, tzinfo=timezone.utc) for day in (1, 2, 3)]
    object_storage.put("tenant-a/a.pdf", modified=stamps[0])
    object_storage.put("tenant-a/b.DOCX", modified=stamps[1])
    object_storage.put("tenant-a/sub/c.xlsx", modified=stamps[2])
    object_storage.put("tenant-a/notes.txt")
    object_storage.put("tenant-b/d.pdf")

    documents = await source.get_new_or_modified_documents([])

    assert [doc.document_id for doc in documents] == ["tenant-a/a.pdf", "tenant-a/b.DOCX", "tenant-a/sub/c.xlsx"]
    assert [doc.document_version for doc in documents] == [
        "2024-03-01T12:00:00.000000+00:00",
        "2024-03-02T12:00:00.000000+00:00",
        "2024-03-03T12:00:00.000000+00:00",
    ]
    assert {doc.source_id for doc in documents} == {"BlobStorageSource:corpus"}

    assert await source.get_new_or_modified_documents(documents) == []


@pytest.mark.asyncio
async def test_modified_blob_is_reported_again(source, object_storage):
    object_storage.put("tenant-a/a.pdf")
    first = await source.get_new_or_modified_documents([])

    object_storage.put("tenant-a/a.pdf", modified=datetime(2025, 1, 1, tzinfo=timezone.utc))
    second = await source.get_new_or_modified_documents(first)

    assert [doc.document_id for doc in second] == ["tenant-a/a.pdf"]
    assert second[0].document_version != first[0].document_version
    assert second[0].key != first[0].key


@pytest.mark.asyncio
async def test_deleted_blobs_are_scoped_to_prefix_and_source(source, object_storage):
    object_storage.put("tenant-a/kept.pdf")
    existing = [
        IngestedDocument(source_id=source.source_id, document_id="tenant-a/kept.pdf", document_version="v"),
        IngestedDocument(source_id=source.source_id, document_id="TENANT-A/gone.pdf", document_version="v"),
        IngestedDocument(source_id=source.source_id, document_id="tenant-b/other.pdf", document_version="v"),
        IngestedDocument(source_id="Elasticsearch:x", document_id="tenant-a/foreign.pdf", document_version="v"),
    ]

    deleted = await source.get_deleted_documents(existing)
    changed = await source.get_new_or_modified_documents(existing)

    assert [doc.document_id for doc in deleted] == ["TENANT-A/gone.pdf"]
    assert "TENANT-A/gone.pdf" not in {doc.document_id for doc in changed}


@pytest.mark.asyncio
async def test_listing_failure_is_not_mistaken_for_deletion(source, object_storage):
    object_storage.list_error = TransientSourceError("storage_timeout", "timed out")
    existing = [IngestedDocument(source_id=source.source_id, document_id="tenant-a/x.pdf", document_version="v")]

    with pytest.raises(TransientSourceError):
        await source.get_deleted_documents(existing)


@pytest.mark.asyncio
async def test_out_of_prefix_document_is_rejected_before_fetch(source, object_storage):
    object_storage.put("tenant-b/secret.pdf", b"classified")
    document = IngestedDocument(source_id=source.source_id, document_id="tenant-b/secret.pdf", document_version="v")

    with pytest.raises(ScopeViolationError):
        await source.create_chunks_for_document(document)
    assert object_storage.downloads == []


@pytest.mark.asyncio
async def test_chunks_keep_page_numbers(source, object_storage):
    object_storage.put("tenant-a/report.pdf", "intro page\fsecond page has a few more words in it and then keeps going".encode())
    document = IngestedDocument(source_id=source.source_id, document_id="tenant-a/report.pdf", document_version="v")

    chunks = await source.create_chunks_for_document(document)

    assert [(chunk.page_number, chunk.index_on_page) for chunk in chunks] == [(1, 0), (2, 0), (2, 1)]
    assert chunks[0].text == "intro page"
    assert all(chunk.document_id == "tenant-a/report.pdf" for chunk in chunks)
    assert all(chunk.source_id == source.source_id for chunk in chunks)
    assert len({chunk.key for chunk in chunks}) == 3


@pytest.mark.asyncio
async def test_decode_failure_propagates_to_caller(source, object_storage, stub_parser):
    object_storage.put("tenant-a/image.png")
    stub_parser.fail_on.add("tenant-a/image.png")
    document = IngestedDocument(source_id=source.source_id, document_id="tenant-a/image.png", document_version="v")

    with pytest.raises(DocumentDecodeError):
        await source.create_chunks_for_document(document)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "document_id",
    ["tenant-a/../tenant-b/secret.pdf", "TENANT-A/secret.pdf", "tenant-a/./secret.pdf", "tenant-a//secret.pdf"],
)
async def test_disguised_out_of_prefix_ids_are_rejected_before_fetch(source, object_storage, document_id):
    object_storage.put(document_id, b"classified")
    document = IngestedDocument(source_id=source.source_id, document_id=document_id, document_version="v")

    with pytest.raises(ScopeViolationError):
        await source.create_chunks_for_document(document)
    assert object_storage.downloads == []


@pytest.mark.asyncio
async def test_download_is_confined_to_prefix(source, object_storage):
    object_storage.put("tenant-a/report.pdf", b"quarterly numbers")
    document = IngestedDocument(source_id=source.source_id, document_id="tenant-a/report.pdf", document_version="v")

    chunks = await source.create_chunks_for_document(document)

    assert object_storage.downloads == ["tenant-a/report.pdf"]
    assert object_storage.download_prefixes == ["tenant-a/"]
    assert [chunk.text for chunk in chunks] == ["quarterly numbers"]

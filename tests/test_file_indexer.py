"""Tests for folder ingestion."""

import asyncio

import pytest
from PIL import Image
from conftest import FakeCaptioner, FakeEmbedder, FakeStore, make_pdf

from hybrid_rag.ingest.file_indexer import FileIndexer, discover_files, split_patterns
from hybrid_rag.models import document_id

DENSE_TEXT = "Dette avsnittet beskriver hvordan rekkverket festes til terrassen med fire bolter per stolpe. " * 4


class RecordingRenderer:
    """Page renderer factory that records which PDFs were rasterized."""

    def __init__(self):
        self.started = []

    def __call__(self, path):
        def render():
            self.started.append(path.name)
            for i in range(10):
                yield f"png-{i}".encode()

        return render


@pytest.mark.unit
class TestDiscovery:
    def test_split_patterns(self):
        assert split_patterns("*.pdf;*.docx, *.txt  *.md") == ["*.pdf", "*.docx", "*.txt", "*.md"]
        assert split_patterns("") == []

    def test_union_and_case_insensitive_dedup(self, tmp_path):
        (tmp_path / "a.pdf").write_bytes(b"")
        (tmp_path / "b.txt").write_text("b")
        (tmp_path / "c.docx").write_bytes(b"")

        files = discover_files(tmp_path, "*.pdf;*.txt;*.PDF;*.pdf", recursive=False)
        names = sorted(p.name for p in files)
        assert names == ["a.pdf", "b.txt"]

    def test_recursive_flag(self, tmp_path):
        sub = tmp_path / "sub"
        sub.mkdir()
        (tmp_path / "top.txt").write_text("top")
        (sub / "deep.txt").write_text("deep")

        assert [p.name for p in discover_files(tmp_path, "*.txt", recursive=False)] == ["top.txt"]
        assert sorted(p.name for p in discover_files(tmp_path, "*.txt", recursive=True)) == ["deep.txt", "top.txt"]


@pytest.mark.unit
class TestIndexFolder:
    @pytest.mark.asyncio
    async def test_folder_scenario(self, tmp_path, config):
        """3 PDFs, 2 text files (one empty) and a docx with pattern *.pdf,*.txt."""
        for name in ("one", "two", "three"):
            make_pdf(tmp_path / f"{name}.pdf", [f"{name} pdf content"])
        (tmp_path / "notes.txt").write_text("Some notes", encoding="utf-8")
        (tmp_path / "empty.txt").write_text("", encoding="utf-8")
        (tmp_path / "ignored.docx").write_bytes(b"")

        store = FakeStore()
        embedder = FakeEmbedder()
        count = await FileIndexer(config, FakeCaptioner()).index_folder(
            store, embedder, "docs", tmp_path, "*.pdf,*.txt", recursive=False
        )

        assert count == 5
        assert len(store.docs) == 4
        titles = sorted(d.title for d in store.docs.values())
        assert titles == ["notes", "one", "three", "two"]
        assert len(embedder.calls) == 4
        assert all(d.content.strip() for d in store.docs.values())

    @pytest.mark.asyncio
    async def test_two_page_pdf_auto_captioning(self, tmp_path, caption_config):
        """Page 1 is sparse and gets a caption, page 2 is dense without figure words and does not."""
        path = make_pdf(tmp_path / "guide.pdf", ["Figure 1", DENSE_TEXT])
        captioner = FakeCaptioner(["Tegning av braketten."])
        renderer = RecordingRenderer()
        store = FakeStore()

        await FileIndexer(caption_config, captioner, page_renderer=renderer).index_folder(
            store, FakeEmbedder(), "docs", tmp_path, "*.pdf", recursive=False
        )

        assert len(captioner.calls) == 1
        assert captioner.calls[0]["image"] == b"png-0"
        assert "PDF page 1" in captioner.calls[0]["task_hint"]

        content = store.docs[document_id(str(path))].content
        assert content.index("[Page 1 - text]") < content.index("[Page 1 - image/figure]")
        assert content.index("[Page 1 - image/figure]") < content.index("[Page 2 - text]")
        assert "[Page 2 - image/figure]" not in content
        assert "Tegning av braketten." in content

    @pytest.mark.asyncio
    async def test_dense_first_page_blank_second_page(self, tmp_path, caption_config):
        """Page 1 holds 500 characters of text, page 2 is blank: only page 2 is captioned."""
        page_one = ("Monter stolpene med fire bolter. " * 16)[:500]
        path = make_pdf(tmp_path / "report.pdf", [page_one, ""])
        captioner = FakeCaptioner(["Oversiktsskisse av terrassen."])
        renderer = RecordingRenderer()
        store = FakeStore()

        await FileIndexer(caption_config, captioner, page_renderer=renderer).index_folder(
            store, FakeEmbedder(), "docs", tmp_path, "*.pdf", recursive=False
        )

        assert len(captioner.calls) == 1
        assert captioner.calls[0]["image"] == b"png-1"
        assert captioner.calls[0]["task_hint"].startswith("PDF page 2. ")
        assert renderer.started == ["report.pdf"]

        content = store.docs[document_id(str(path))].content
        assert "[Page 1 - image/figure]" not in content
        assert content.index("[Page 1 - text]") < content.index("[Page 2 - image/figure]")
        assert content.endswith("[Page 2 - image/figure]\nOversiktsskisse av terrassen.")

    @pytest.mark.asyncio
    async def test_report_notes_and_image_folder(self, tmp_path, config):
        make_pdf(tmp_path / "report.pdf", ["Årsrapport for monteringsavdelingen"])
        (tmp_path / "notes.txt").write_text("Notater fra befaring", encoding="utf-8")
        Image.new("RGB", (8, 8), "white").save(tmp_path / "image.png")
        store = FakeStore()

        count = await FileIndexer(config, FakeCaptioner()).index_folder(
            store, FakeEmbedder(), "docs", tmp_path, "*.pdf,*.txt", recursive=False
        )

        assert count == 2
        assert sorted(d.title for d in store.docs.values()) == ["notes", "report"]
        assert str(tmp_path / "image.png") not in {d.source_path for d in store.docs.values()}

    @pytest.mark.asyncio
    async def test_pages_not_rendered_when_no_caption_needed(self, tmp_path, caption_config):
        make_pdf(tmp_path / "dense.pdf", [DENSE_TEXT, DENSE_TEXT])
        renderer = RecordingRenderer()

        await FileIndexer(caption_config, FakeCaptioner(), page_renderer=renderer).index_folder(
            FakeStore(), FakeEmbedder(), "docs", tmp_path, "*.pdf", recursive=False
        )

        assert renderer.started == []

    @pytest.mark.asyncio
    async def test_image_only_pdf_is_kept_through_its_caption(self, tmp_path, caption_config):
        path = make_pdf(tmp_path / "drawing.pdf", [""])
        store = FakeStore()

        await FileIndexer(caption_config, FakeCaptioner(["Skisse av et vindu."]), page_renderer=RecordingRenderer()).index_folder(
            store, FakeEmbedder(), "docs", tmp_path, "*.pdf", recursive=False
        )

        content = store.docs[document_id(str(path))].content
        assert content == "[Page 1 - image/figure]\nSkisse av et vindu."

    @pytest.mark.asyncio
    async def test_empty_caption_and_no_text_skips_document(self, tmp_path, caption_config):
        make_pdf(tmp_path / "blank.pdf", [""])
        store = FakeStore()

        await FileIndexer(caption_config, FakeCaptioner([""]), page_renderer=RecordingRenderer()).index_folder(
            store, FakeEmbedder(), "docs", tmp_path, "*.pdf", recursive=False
        )

        assert store.docs == {}

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, tmp_path, config):
        (tmp_path / "good.txt").write_text("good content", encoding="utf-8")
        (tmp_path / "embed-fails.txt").write_text("poison content", encoding="utf-8")
        (tmp_path / "write-fails.txt").write_text("rejected content", encoding="utf-8")
        (tmp_path / "corrupt.pdf").write_bytes(b"garbage")

        store = FakeStore(fail_paths={str(tmp_path / "write-fails.txt")})
        embedder = FakeEmbedder(fail_on=("poison",))

        count = await FileIndexer(config, FakeCaptioner()).index_folder(
            store, embedder, "docs", tmp_path, "*.txt;*.pdf", recursive=False
        )

        assert count == 4
        assert [d.title for d in store.docs.values()] == ["good"]

    @pytest.mark.asyncio
    async def test_site_tag_and_identity(self, tmp_path, config):
        path = tmp_path / "manual.txt"
        path.write_text("first version", encoding="utf-8")
        store = FakeStore()
        indexer = FileIndexer(config, FakeCaptioner())

        await indexer.index_folder(store, FakeEmbedder(), "docs", tmp_path, "*.txt", recursive=False, site="intranet")
        path.write_text("second version", encoding="utf-8")
        await indexer.index_folder(store, FakeEmbedder(), "docs", tmp_path, "*.txt", recursive=False, site="intranet")

        assert len(store.docs) == 1
        document = store.docs[document_id(str(path))]
        assert document.content == "second version"
        assert document.site == "intranet"
        assert document.source_path == str(path)

    @pytest.mark.asyncio
    async def test_empty_folder(self, tmp_path, config):
        count = await FileIndexer(config).index_folder(
            FakeStore(), FakeEmbedder(), "docs", tmp_path, "*.pdf", recursive=True
        )
        assert count == 0

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, tmp_path, config):
        for i in range(6):
            (tmp_path / f"f{i}.txt").write_text(f"file {i}", encoding="utf-8")

        active = 0
        peak = 0

        class SlowEmbedder(FakeEmbedder):
            async def embed(self, text):
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1
                return await super().embed(text)

        await FileIndexer(config).index_folder(
            FakeStore(), SlowEmbedder(), "docs", tmp_path, "*.txt", recursive=False, max_concurrency=2
        )

        assert peak <= 2

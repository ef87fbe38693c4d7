from pathlib import Path

import pytest
from PIL import Image

from config import AppConfig
from database import DatabaseManager
from naming import PathResolver
from optimization import (
    ImageOptimizationError,
    ImageOptimizer,
    OptimizationBatchRunner,
    OptimizationOutcome,
)


def build_db_paths(root: Path) -> dict[str, Path]:
    return {
        "metadata": root / "receipt_vault.sqlite",
        "state": root / "state.sqlite",
    }


def build_config(tmp_path: Path, **optimization) -> AppConfig:
    settings = {"max_dimension_px": 1000, "quality": 80, "min_size_bytes": 0, "batch_size": 1, "max_concurrent": 2}
    settings.update(optimization)
    return AppConfig.from_dict({"optimization": settings}, root_dir=tmp_path)


def make_jpeg(path: Path, size: tuple[int, int] = (2400, 1800)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    image = Image.new("RGB", size, (200, 30, 40))
    for x in range(0, size[0], 40):
        for y in range(0, size[1], 40):
            image.putpixel((x, y), (10, 220, 90))
    image.save(path, format="JPEG", quality=95)
    return path


def test_optimizer_downsizes_and_converts(tmp_path: Path) -> None:
    optimizer = ImageOptimizer(build_config(tmp_path))
    source = make_jpeg(tmp_path / "big.jpg")

    result = optimizer.optimize(source, optimizer.output_path_for(source))

    assert result.outcome is OptimizationOutcome.OPTIMIZED
    assert result.output == tmp_path / "big.webp"
    assert result.optimized_size < result.original_size
    assert max(result.final_dimensions) == 1000
    with Image.open(result.output) as optimized:
        assert optimized.format == "WEBP"
        assert optimized.size == (1000, 750)


def test_optimizer_skips_small_efficient_files(tmp_path: Path) -> None:
    optimizer = ImageOptimizer(build_config(tmp_path, min_size_bytes=10_000_000))
    source = make_jpeg(tmp_path / "small.jpg", size=(64, 64))

    result = optimizer.optimize(source, optimizer.output_path_for(source))

    assert result.outcome is OptimizationOutcome.SKIPPED
    assert result.reason == "below_threshold"
    assert not (tmp_path / "small.webp").exists()


def test_optimizer_detects_near_grayscale(tmp_path: Path) -> None:
    optimizer = ImageOptimizer(build_config(tmp_path))
    source = tmp_path / "gray.png"
    Image.new("RGB", (800, 800), (120, 121, 122)).save(source, format="PNG")

    result = optimizer.optimize(source, optimizer.output_path_for(source))

    assert result.grayscale is True


def test_optimizer_rejects_corrupt_images(tmp_path: Path) -> None:
    optimizer = ImageOptimizer(build_config(tmp_path))
    source = tmp_path / "broken.jpg"
    source.write_bytes(b"not really a jpeg")

    with pytest.raises(ImageOptimizationError):
        optimizer.optimize(source, optimizer.output_path_for(source))
    assert not (tmp_path / "broken.webp").exists()
    assert not (tmp_path / ".broken.webp.part").exists()


def test_batch_optimizes_images_and_marks_other_files(tmp_path: Path) -> None:
    config = build_config(tmp_path)
    db_manager = DatabaseManager(build_db_paths(tmp_path))
    db_manager.initialize()
    root = tmp_path / "receipts"
    resolver = PathResolver(root, pattern_source=db_manager, lookup=db_manager)
    runner = OptimizationBatchRunner(config, db_manager, resolver, ImageOptimizer(config))

    record = db_manager.create_record(owner="John Doe", date="2024-01-15", vendor="Clinic", amount=12)
    directory = resolver.ensure_directory(resolver.directory_for_record(record))
    pdf_name = resolver.filename_for(record, 0, ".pdf")
    (directory / pdf_name).write_bytes(b"%PDF-1.4")
    jpg_name = resolver.filename_for(record, 1, ".jpg")
    make_jpeg(directory / jpg_name)
    db_manager.insert_file(record.id, pdf_name, "scan.pdf", 0)
    image_file = db_manager.insert_file(record.id, jpg_name, "photo.jpg", 1)

    stats = runner.optimize_pending()

    assert stats.total == 2
    assert stats.skipped >= 1
    assert stats.optimized >= 1
    assert stats.errors == []
    assert db_manager.list_unoptimized_files() == []
    optimized = db_manager.get_file(image_file.id)
    assert optimized.filename == resolver.filename_for(record, 1, ".webp")
    assert (directory / optimized.filename).exists()
    assert not (directory / jpg_name).exists()

    again = runner.reoptimize_all(batch_size=5, max_concurrent=1)
    assert again.total == 1
    assert again.errors == []
    assert db_manager.list_unoptimized_files() == []


def test_batch_reports_encode_failures_without_marking(tmp_path: Path) -> None:
    config = build_config(tmp_path)
    db_manager = DatabaseManager(build_db_paths(tmp_path))
    db_manager.initialize()
    root = tmp_path / "receipts"
    resolver = PathResolver(root, pattern_source=db_manager, lookup=db_manager)
    runner = OptimizationBatchRunner(config, db_manager, resolver, ImageOptimizer(config))

    record = db_manager.create_record(owner="John Doe", date="2024-01-15")
    directory = resolver.ensure_directory(resolver.directory_for_record(record))
    broken_name = resolver.filename_for(record, 0, ".png")
    (directory / broken_name).write_bytes(b"garbage")
    broken = db_manager.insert_file(record.id, broken_name, "broken.png", 0)
    missing = db_manager.insert_file(record.id, resolver.filename_for(record, 1, ".jpg"), "gone.jpg", 1)

    stats = runner.optimize_pending()

    assert stats.total == 2
    assert stats.skipped == 1
    assert len(stats.errors) == 1
    assert stats.errors[0]["file_id"] == broken.id
    assert db_manager.get_file(broken.id).is_optimized is False
    assert db_manager.get_file(missing.id).is_optimized is True

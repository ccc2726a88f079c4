"""High-level palette join pipeline: load, merge, remap, write."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Literal, Sequence, Tuple

import numpy as np

from .image_io import BackupError, SourceImage, backup_file, encode_image, load_source
from .merge import SENTINEL_SLOT, UnifiedPalette, merge_palettes
from .palette_ops import MAX_PALETTE_SIZE, ColorTuple, write_gpl_palette
from .remap import TranslationError, remap_image


logger = logging.getLogger(__name__)

FileStatus = Literal["written", "checked", "palette", "skipped", "failed", "aborted"]


@dataclass(slots=True)
class JoinOptions:
    inputs: Sequence[Path]
    backup: bool = True
    eliminate_unused: bool = False  # accepted, currently has no effect
    dry_run: bool = False
    jobs: int = 1
    palette_file: Path | None = None
    capacity: int = MAX_PALETTE_SIZE


@dataclass(slots=True)
class FileResult:
    path: Path
    status: FileStatus
    message: str = ""
    backup_path: Path | None = None


@dataclass
class JoinContext:
    """State threaded through the phases of one run."""

    options: JoinOptions
    images: List[SourceImage] = field(default_factory=list)
    unified: UnifiedPalette | None = None
    results: List[FileResult] = field(default_factory=list)
    aborted: bool = False


@dataclass(slots=True)
class JoinReport:
    files: List[FileResult]
    palette: List[ColorTuple]
    total_colors: int
    overflow: bool
    aborted: bool

    @property
    def failures(self) -> List[FileResult]:
        return [result for result in self.files if result.status in {"failed", "aborted"}]

    @property
    def skipped(self) -> List[FileResult]:
        return [result for result in self.files if result.status == "skipped"]

    @property
    def ok(self) -> bool:
        return not self.aborted and not self.failures


def load_phase(ctx: JoinContext) -> JoinContext:
    ctx.images = [load_source(Path(path)) for path in ctx.options.inputs]
    valid = sum(1 for image in ctx.images if image.valid)
    logger.debug("Loaded inputs total=%s valid=%s", len(ctx.images), valid)
    return ctx


def merge_phase(ctx: JoinContext) -> JoinContext:
    ctx.unified = merge_palettes(ctx.images, capacity=ctx.options.capacity)
    if ctx.options.eliminate_unused:
        logger.warning("--eliminate-unused is accepted but currently has no effect")
    return ctx


def _remap_one(
    image: SourceImage, unified: UnifiedPalette
) -> Tuple[np.ndarray | None, TranslationError | None]:
    try:
        return remap_image(image, unified), None
    except TranslationError as exc:
        return None, exc


def _iter_remapped(
    images: Sequence[SourceImage], unified: UnifiedPalette, jobs: int
) -> Iterator[Tuple[SourceImage, np.ndarray | None, TranslationError | None]]:
    """Yield remap results in input order.

    With ``jobs > 1`` images are remapped on a thread pool; results are still
    consumed in order and pending work is cancelled if the consumer stops.
    """

    if jobs <= 1:
        for image in images:
            yield (image, *_remap_one(image, unified))
        return
    pool = ThreadPoolExecutor(max_workers=jobs, thread_name_prefix="palettejoin-remap")
    try:
        futures = [pool.submit(_remap_one, image, unified) for image in images]
        for image, future in zip(images, futures):
            yield (image, *future.result())
    finally:
        pool.shutdown(wait=True, cancel_futures=True)


def _write_one(ctx: JoinContext, image: SourceImage, pixels: np.ndarray) -> FileResult:
    unified = ctx.unified
    backup_path = None
    if ctx.options.backup:
        backup_path = backup_file(image.path)
    try:
        encode_image(image.path, unified.colors, pixels, transparent_slot=SENTINEL_SLOT)
    except (OSError, ValueError) as exc:
        logger.error("Failed to write %s: %s", image.path, exc)
        return FileResult(image.path, "failed", f"write failed: {exc}", backup_path)
    return FileResult(image.path, "written", backup_path=backup_path)


def rewrite_phase(ctx: JoinContext) -> JoinContext:
    """Remap every valid image and write it back over its input file.

    A backup failure stops the run before that file is touched; files already
    written stay written.
    """

    if ctx.unified is None:
        raise RuntimeError("merge_phase must run before rewrite_phase")
    targets = [image for image in ctx.images if image.valid and image.kind == "png"]
    outcomes: Dict[int, FileResult] = {}
    remapped = _iter_remapped(targets, ctx.unified, ctx.options.jobs)
    try:
        for image, pixels, error in remapped:
            if error is not None:
                logger.error("%s", error)
                outcomes[id(image)] = FileResult(image.path, "failed", str(error))
            elif ctx.options.dry_run:
                outcomes[id(image)] = FileResult(image.path, "checked")
            else:
                try:
                    outcomes[id(image)] = _write_one(ctx, image, pixels)
                except BackupError as exc:
                    logger.error("%s", exc)
                    outcomes[id(image)] = FileResult(image.path, "aborted", str(exc))
                    ctx.aborted = True
            image.release()
            if ctx.aborted:
                break
    finally:
        remapped.close()

    for image in ctx.images:
        if not image.valid:
            result = FileResult(image.path, "skipped", image.error or "invalid input")
        elif image.kind == "gpl":
            result = FileResult(image.path, "palette")
        else:
            result = outcomes.get(id(image))
            if result is None:
                image.release()
                result = FileResult(image.path, "aborted", "not processed: run aborted")
        ctx.results.append(result)
    return ctx


def run_join(options: JoinOptions) -> JoinReport:
    ctx = JoinContext(options=options)
    load_phase(ctx)
    merge_phase(ctx)
    rewrite_phase(ctx)
    unified = ctx.unified
    if options.palette_file is not None:
        try:
            write_gpl_palette(options.palette_file, unified.colors)
        except OSError as exc:
            logger.error("Failed to write palette %s: %s", options.palette_file, exc)
            ctx.results.append(
                FileResult(options.palette_file, "failed", f"palette write failed: {exc}")
            )
        else:
            logger.debug("Wrote palette %s colors=%s", options.palette_file, len(unified))
    return JoinReport(
        files=ctx.results,
        palette=list(unified.colors),
        total_colors=unified.total_colors,
        overflow=unified.overflow,
        aborted=ctx.aborted,
    )

import os
import shutil
import tempfile
import time
import zipfile
from collections.abc import Callable, Iterable
from concurrent.futures import Executor, Future
from pathlib import Path

from loguru import logger

from ...errors import XlsxBuildError
from .conf import C_SUFFIX_XLSX, C_SUFFIX_ZIP
from .spec import SpecAutofitPolicy, SpecExportJob, SpecExportTask

################################################################################
# #region TempFiles


def create_temp_file(
    prefix: str, suffix: str, *, dir_temp: os.PathLike[str] | str | None = None
) -> Path:
    """Create an empty temp file and return its path; the caller owns deletion."""
    n_fd, c_path = tempfile.mkstemp(prefix=f"{prefix}_", suffix=suffix, dir=dir_temp)
    os.close(n_fd)
    return Path(c_path)


def delete_temp_files(paths: Iterable[Path]) -> None:
    for _path in paths:
        try:
            _path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to delete temp file `{_path}`: {e}")


# #endregion
################################################################################
# #region ExportScheduler


class ExportScheduler:
    """
    Persist sealed chunks to temp files, inline or on a caller-supplied executor.

    The scheduler owns every temp path it hands out, in chunk order, until the
    caller collects them (:meth:`paths_existing`) or throws them away
    (:meth:`discard`). Each submitted job runs strictly after the builder has
    stopped touching the chunk; jobs may overlap with each other and with the
    builder filling the next chunk.

    Args:
        executor: Optional pool for background export. ``None`` exports inline.
        callback_path: Invoked with each chunk path after it is persisted.
        autofit: Policy turning observed widths into column widths.
        suffix: Extension of the chunk files.
        prefix: Temp-file name prefix.
        dir_temp: Directory for temp files (system default if None).
    """

    def __init__(
        self,
        *,
        executor: Executor | None = None,
        callback_path: Callable[[Path], None] | None = None,
        autofit: SpecAutofitPolicy | None = None,
        suffix: str = C_SUFFIX_XLSX,
        prefix: str = "s_t_r_p",
        dir_temp: os.PathLike[str] | str | None = None,
    ):
        self.executor = executor
        self.callback_path = callback_path
        self.autofit = SpecAutofitPolicy() if autofit is None else autofit
        self.suffix = suffix
        self.prefix = prefix
        self.dir_temp = dir_temp
        self._tasks: list[SpecExportTask] = []
        self._is_discarded = False

    @property
    def tasks(self) -> tuple[SpecExportTask, ...]:
        return tuple(self._tasks)

    def finalize_document(self, job: SpecExportJob) -> None:
        """Apply column widths to the job's sheet and freeze its title rows."""
        if self.autofit.if_enabled and job.widths_by_col:
            job.document.set_column_widths(
                job.sheet,
                {
                    _col: self.autofit.derive_width(_width)
                    for _col, _width in job.widths_by_col.items()
                },
            )
        job.document.freeze_panes(job.height_titles_frozen)

    def _export(self, job: SpecExportJob, path: Path) -> Path:
        t0 = time.perf_counter()
        self.finalize_document(job)
        job.document.serialize(path)
        logger.debug(
            f"Exported chunk `{path.name}` in {(time.perf_counter() - t0) * 1000:.0f} ms"
        )
        if self.callback_path is not None:
            self.callback_path(path)
        return path

    def _delete_when_done(self, fut: Future[Path], path: Path) -> None:
        if fut.cancel():
            delete_temp_files([path])
            return
        fut.add_done_callback(lambda _fut: delete_temp_files([path]))

    def submit(self, job: SpecExportJob) -> SpecExportTask:
        if self._is_discarded:
            raise XlsxBuildError("Export scheduler was discarded.")
        path = create_temp_file(self.prefix, self.suffix, dir_temp=self.dir_temp)
        task = SpecExportTask(path=path)
        self._tasks.append(task)

        if self.executor is not None:
            task.future = self.executor.submit(self._export, job, path)
            return task

        try:
            self._export(job, path)
        except Exception as e:
            delete_temp_files([path])
            raise XlsxBuildError(f"Failed to export chunk `{path.name}`") from e
        return task

    def join(self) -> None:
        """Wait for every background export; raise the first failure."""
        exc_first: BaseException | None = None
        n_failed = 0
        for _task in self._tasks:
            if _task.future is None:
                continue
            try:
                _task.future.result()
            except Exception as e:
                n_failed += 1
                logger.error(f"Export of `{_task.path.name}` failed: {e}")
                if exc_first is None:
                    exc_first = e
        if exc_first is not None:
            raise XlsxBuildError(
                f"{n_failed}/{len(self._tasks)} chunk exports failed."
            ) from exc_first

    def paths_existing(self) -> list[Path]:
        return [_task.path for _task in self._tasks if _task.path.exists()]

    def package_zip(self, name: str) -> Path:
        """
        Bundle every existing chunk into one zip archive and delete the chunks.

        Entries are named ``"<name> (<n>)<suffix>"`` in chunk order. Afterwards
        the archive is the only path tracked by the scheduler.
        """
        l_paths = self.paths_existing()
        path_zip = create_temp_file(name, C_SUFFIX_ZIP, dir_temp=self.dir_temp)
        try:
            with zipfile.ZipFile(path_zip, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for _idx, _path in enumerate(l_paths, start=1):
                    with (
                        open(_path, "rb") as fh_src,
                        zf.open(f"{name} ({_idx}){self.suffix}", "w") as fh_dst,
                    ):
                        shutil.copyfileobj(fh_src, fh_dst)
        except Exception:
            delete_temp_files([path_zip])
            raise
        finally:
            delete_temp_files(_task.path for _task in self._tasks)
            self._tasks.clear()
        self._tasks.append(SpecExportTask(path=path_zip))
        logger.debug(f"Packed {len(l_paths)} chunk(s) into `{path_zip.name}`")
        return path_zip

    def discard(self) -> None:
        """Delete every tracked temp file, including ones still being exported."""
        self._is_discarded = True
        for _task in self._tasks:
            if _task.future is not None and not _task.future.done():
                self._delete_when_done(_task.future, _task.path)
        delete_temp_files(_task.path for _task in self._tasks)
        self._tasks.clear()


# #endregion
################################################################################

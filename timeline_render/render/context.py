import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from typing import Optional
from uuid import uuid4

from timeline_render.config import Settings
from timeline_render.services.event_stream import ProgressReporter
from timeline_render.services.storage_service import StorageService

logger = logging.getLogger(__name__)


@dataclass
class RenderContext:
    """Everything one render job needs, built once per job and passed to each stage.

    The context exclusively owns ``work_dir``; nothing outside the job reads
    or writes it, and :meth:`cleanup` removes it.
    """

    project_id: str
    settings: Settings
    storage: StorageService
    progress: ProgressReporter
    work_dir: str
    job_id: str = field(default_factory=lambda: uuid4().hex[:12])

    @classmethod
    def create(
        cls,
        project_id: str,
        settings: Settings,
        storage: StorageService,
        progress: ProgressReporter,
        job_id: Optional[str] = None,
    ) -> "RenderContext":
        job_id = job_id or uuid4().hex[:12]
        work_dir = tempfile.mkdtemp(prefix=f"render_{job_id}_")
        context = cls(
            project_id=project_id,
            settings=settings,
            storage=storage,
            progress=progress,
            work_dir=work_dir,
            job_id=job_id,
        )
        os.makedirs(context.assets_dir, exist_ok=True)
        os.makedirs(context.chunks_dir, exist_ok=True)
        os.makedirs(context.output_dir, exist_ok=True)
        logger.info(f"[JOB {job_id}] Temp directory: {work_dir}")
        return context

    @property
    def assets_dir(self) -> str:
        return os.path.join(self.work_dir, "assets")

    @property
    def chunks_dir(self) -> str:
        return os.path.join(self.work_dir, "chunks")

    @property
    def output_dir(self) -> str:
        return os.path.join(self.work_dir, "output")

    def cleanup(self) -> None:
        """Remove the job's temp directory. Failures are logged, never raised."""
        try:
            shutil.rmtree(self.work_dir)
            logger.info(f"[JOB {self.job_id}] Temp directory cleaned up")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"[JOB {self.job_id}] Failed to clean up temp directory: {e}")

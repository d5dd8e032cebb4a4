"""Batch grader for processing a directory of submissions in parallel using async/await."""

import asyncio
import logging
import yaml
from pathlib import Path
from typing import List, Dict, Any, Optional
from dataclasses import dataclass
from datetime import datetime

from tqdm.asyncio import tqdm

from gradeflow.libs.config_loader import ConfigType, get_config
from gradeflow.libs.llm import ProviderFactory
from gradeflow.tools.chunked_processing import ChunkingPipeline, FinalResult, GradingDepth, Job, JobMode

LOG = logging.getLogger(__name__)

SUBMISSION_SUFFIXES = ('.txt', '.md')
DEFAULT_FEEDBACK_SUFFIX = '_feedback.yaml'


@dataclass
class BatchGradingResult:
    """Result from grading one submission file."""
    submission_file: str
    student_id: str
    success: bool
    score: Optional[float] = None
    max_score: Optional[float] = None
    error_message: Optional[str] = None
    final_result: Optional[FinalResult] = None
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        data = {
            'submission_file': self.submission_file,
            'student_id': self.student_id,
            'success': self.success,
            'score': self.score,
            'max_score': self.max_score,
            'timestamp': self.timestamp,
        }
        if self.error_message:
            data['error_message'] = self.error_message
        if self.final_result:
            data['provider_chain'] = list(self.final_result.provider_chain)
            data['chunked'] = self.final_result.chunked
            data['chunk_count'] = self.final_result.chunk_count
            data['feedback'] = self.final_result.combined_text
        return data


class BatchGrader:
    """Grade every submission file in a directory using the chunking pipeline."""

    def __init__(self, configs: ConfigType, provider: str = "openai", model: Optional[str] = None,
                 temperature: float = 0.7, depth: Optional[GradingDepth] = None,
                 max_concurrent: Optional[int] = None,
                 provider_factory: Optional[ProviderFactory] = None):
        """
        Initialize the batch grader.

        Args:
            configs: Configuration dictionary
            provider: Requested provider for every submission
            model: Optional model override
            temperature: Sampling temperature
            depth: Optional grading depth
            max_concurrent: Maximum number of concurrent grading tasks (overrides config)
            provider_factory: Optional provider factory override
        """
        self.configs = configs
        self.provider = provider
        self.model = model
        self.temperature = temperature
        self.depth = depth
        self.pipeline = ChunkingPipeline(configs, provider_factory)

        # Get max concurrent tasks from parameter or config
        if max_concurrent is not None:
            self.max_concurrent = max_concurrent
        else:
            self.max_concurrent = get_config("batch.max_concurrent", configs, default=4)

        LOG.info(f"BatchGrader initialized with max_concurrent={self.max_concurrent}")

    @staticmethod
    def find_submission_files(submissions_dir: Path,
                              feedback_suffix: str = DEFAULT_FEEDBACK_SUFFIX) -> List[Path]:
        """
        Find all submission text files directly inside submissions_dir.

        Hidden files and previously written feedback files are skipped.
        """
        files = [
            path for path in submissions_dir.iterdir()
            if path.is_file()
            and path.suffix.lower() in SUBMISSION_SUFFIXES
            and not path.name.startswith('.')
            and not path.name.endswith(feedback_suffix)
        ]
        files.sort()
        return files

    async def _grade_single_submission_async(self, submission_file: Path, assignment_text: str,
                                            instructions_text: str,
                                            feedback_suffix: str) -> BatchGradingResult:
        """
        Grade one submission file and write its feedback YAML beside it.

        Returns:
            BatchGradingResult with grading outcome
        """
        student_id = submission_file.stem
        LOG.debug(f"Grading submission: {student_id}")

        try:
            job = Job(
                assignment_text=assignment_text,
                instructions_text=instructions_text,
                target_text=submission_file.read_text(encoding='utf-8'),
                provider=self.provider,
                model=self.model,
                temperature=self.temperature,
                mode=JobMode.GRADE,
                depth=self.depth,
            )
            final_result = await self.pipeline.run(job)
            grade = final_result.overall_grade
            result = BatchGradingResult(
                submission_file=submission_file.name,
                student_id=student_id,
                success=True,
                score=grade.earned if grade else None,
                max_score=grade.possible if grade else None,
                final_result=final_result,
            )

            feedback_path = submission_file.with_name(f"{submission_file.stem}{feedback_suffix}")
            with open(feedback_path, 'w', encoding='utf-8') as f:
                yaml.dump(result.to_dict(), f, default_flow_style=False, sort_keys=False,
                          allow_unicode=True)

            LOG.debug(f"Graded {student_id}: {grade if grade else 'no grade found'}")
            return result

        except Exception as e:
            LOG.error(f"Error grading {student_id}: {e}")
            return BatchGradingResult(
                submission_file=submission_file.name,
                student_id=student_id,
                success=False,
                error_message=str(e),
            )

    async def grade_all_submissions_async(self, submissions_dir: Path, assignment_text: str,
                                         instructions_text: str,
                                         feedback_suffix: str = DEFAULT_FEEDBACK_SUFFIX
                                         ) -> List[BatchGradingResult]:
        """
        Grade all submissions asynchronously with concurrency control.

        Args:
            submissions_dir: Directory containing submission .txt/.md files
            assignment_text: Assignment prompt
            instructions_text: Grading instructions or rubric
            feedback_suffix: Suffix for the feedback file written beside each submission

        Returns:
            List of BatchGradingResult objects sorted by student ID
        """
        submission_files = self.find_submission_files(submissions_dir, feedback_suffix)
        if not submission_files:
            LOG.error(f"No submission files found in {submissions_dir}")
            return []

        LOG.info(f"Found {len(submission_files)} submission files")

        # Create a semaphore to limit concurrent tasks
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def grade_with_semaphore(submission_file: Path) -> BatchGradingResult:
            """Grade a submission with semaphore-controlled concurrency."""
            async with semaphore:
                return await self._grade_single_submission_async(
                    submission_file, assignment_text, instructions_text, feedback_suffix
                )

        tasks = [grade_with_semaphore(path) for path in submission_files]

        results = []
        for coro in tqdm.as_completed(tasks, total=len(tasks), desc="Grading submissions"):
            grading_result = await coro
            results.append(grading_result)
            if grading_result.success:
                LOG.debug(f"Completed: {grading_result.student_id}")
            else:
                LOG.warning(f"Failed: {grading_result.student_id} - {grading_result.error_message}")

        # Sort results by student ID for consistent output
        results.sort(key=lambda r: r.student_id)
        return results

    def grade_all_submissions(self, submissions_dir: Path, assignment_text: str,
                             instructions_text: str,
                             feedback_suffix: str = DEFAULT_FEEDBACK_SUFFIX) -> List[BatchGradingResult]:
        """Synchronous wrapper for grade_all_submissions_async."""
        return asyncio.run(self.grade_all_submissions_async(
            submissions_dir, assignment_text, instructions_text, feedback_suffix
        ))

    def save_summary(self, results: List[BatchGradingResult], output_path: Path):
        """
        Save grading summary to YAML file.

        Args:
            results: List of grading results
            output_path: Path to save summary file
        """
        successful = [r for r in results if r.success]
        failed = [r for r in results if not r.success]
        scored = [r for r in successful if r.score is not None and r.max_score]

        summary = {
            'grading_summary': {
                'timestamp': datetime.now().isoformat(),
                'provider': self.provider,
                'total_submissions': len(results),
                'successful': len(successful),
                'failed': len(failed),
                'average_percentage': (
                    round(sum(r.score / r.max_score * 100 for r in scored) / len(scored), 1)
                    if scored else None
                ),
            },
            'submissions': [
                {k: v for k, v in r.to_dict().items() if k != 'feedback'}
                for r in results
            ]
        }

        with open(output_path, 'w', encoding='utf-8') as f:
            yaml.dump(summary, f, default_flow_style=False, sort_keys=False)

        LOG.info(f"Summary saved to {output_path}")

#!/usr/bin/env python3
"""Command-line interface for batch grading a directory of submissions."""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime

from gradeflow.libs.config_loader import load_default_configs
from gradeflow.libs.llm import PROVIDER_NAMES
from gradeflow.tools.chunked_processing import GradingDepth
from .batch_grader import BatchGrader, DEFAULT_FEEDBACK_SUFFIX

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
LOG = logging.getLogger(__name__)


def main():
    """Main entry point for gradeflow-batch command."""
    parser = argparse.ArgumentParser(
        description='Grade every submission file in a directory, chunking oversized ones',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Grade all .txt/.md submissions in a directory
  gradeflow-batch --submissions-dir essays/ --assignment prompt.md --instructions rubric.md --provider openai

  # Use a specific model and more concurrency
  gradeflow-batch -s essays/ -a prompt.md -i rubric.md --provider anthropic --model claude-3-5-haiku-latest --max-concurrent 8

  # Save summary to specific location
  gradeflow-batch -s essays/ -a prompt.md -i rubric.md --provider openai --summary results.yaml
        """
    )

    # Required arguments
    parser.add_argument(
        '--submissions-dir', '-s',
        type=Path,
        required=True,
        help='Directory containing submission .txt or .md files'
    )
    parser.add_argument(
        '--assignment', '-a',
        type=Path,
        required=True,
        help='Path to the assignment prompt'
    )
    parser.add_argument(
        '--instructions', '-i',
        type=Path,
        required=True,
        help='Path to the grading instructions or rubric'
    )
    parser.add_argument(
        '--provider', '-p',
        choices=PROVIDER_NAMES,
        required=True,
        help='Requested LLM provider (others are used as fallbacks)'
    )

    # Optional arguments
    parser.add_argument(
        '--model', '-m',
        type=str,
        default=None,
        help='Model to use (overrides config value)'
    )
    parser.add_argument(
        '--depth',
        choices=[d.value for d in GradingDepth],
        default=None,
        help='Length of the feedback'
    )
    parser.add_argument(
        '--max-concurrent', '-t',
        type=int,
        default=None,
        help='Maximum number of concurrent grading tasks (overrides config value)'
    )
    parser.add_argument(
        '--feedback-suffix', '-f',
        type=str,
        default=DEFAULT_FEEDBACK_SUFFIX,
        help=f'Suffix of the feedback file written beside each submission (default: {DEFAULT_FEEDBACK_SUFFIX})'
    )
    parser.add_argument(
        '--summary', '-o',
        type=Path,
        default=None,
        help='Path to save summary YAML file (default: grading_summary_TIMESTAMP.yaml in submissions dir)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    args = parser.parse_args()

    # Set logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Validate inputs
    if not args.submissions_dir.is_dir():
        LOG.error(f"Submissions directory does not exist: {args.submissions_dir}")
        sys.exit(1)

    for path in (args.assignment, args.instructions):
        if not path.is_file():
            LOG.error(f"File does not exist: {path}")
            sys.exit(1)

    # Load configuration
    try:
        config = load_default_configs()
    except Exception as e:
        LOG.error(f"Failed to load configuration: {e}")
        sys.exit(1)

    batch_grader = BatchGrader(
        configs=config,
        provider=args.provider,
        model=args.model,
        depth=GradingDepth(args.depth) if args.depth else None,
        max_concurrent=args.max_concurrent
    )

    LOG.info(f"Starting batch grading of submissions in {args.submissions_dir}")
    LOG.info(f"Using provider: {args.provider}" + (f" (model {args.model})" if args.model else ""))

    results = batch_grader.grade_all_submissions(
        submissions_dir=args.submissions_dir,
        assignment_text=args.assignment.read_text(encoding='utf-8'),
        instructions_text=args.instructions.read_text(encoding='utf-8'),
        feedback_suffix=args.feedback_suffix
    )

    if not results:
        LOG.error("No submissions were graded")
        sys.exit(1)

    # Generate summary output path if not specified
    if args.summary is None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        summary_path = args.submissions_dir / f"grading_summary_{timestamp}.yaml"
    else:
        summary_path = args.summary

    try:
        batch_grader.save_summary(results, summary_path)
    except OSError as e:
        LOG.error(f"Failed to save summary: {e}")

    successful = [r for r in results if r.success]
    failed = [r for r in results if not r.success]

    print(f"\n{'='*60}")
    print("Batch Grading Complete")
    print(f"{'='*60}")
    print(f"Total submissions: {len(results)}")
    print(f"Successfully graded: {len(successful)}")
    print(f"Failed: {len(failed)}")

    if successful:
        print("\nGrades:")
        for result in successful:
            chain = " -> ".join(result.final_result.provider_chain)
            if result.score is not None and result.max_score:
                pct = result.score / result.max_score * 100
                print(f"  {result.student_id}: {result.score:g}/{result.max_score:g} ({pct:.1f}%) via {chain}")
            else:
                print(f"  {result.student_id}: no grade found via {chain}")

    if failed:
        print("\nFailed submissions:")
        for result in failed:
            print(f"  {result.student_id}: {result.error_message}")

    print(f"\nFeedback files saved beside each submission as: <name>{args.feedback_suffix}")
    print(f"Summary saved to: {summary_path}")

    if not successful:
        sys.exit(1)


if __name__ == "__main__":
    main()

"""Flask JSON API for grading, rewriting and exemplar generation."""

import logging
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gradeflow.libs.config_loader import ConfigType
from gradeflow.libs.errors import AllProvidersFailedError, ProviderConfigError
from gradeflow.libs.llm import ProviderFactory, available_providers
from gradeflow.tools.chunked_processing import ChunkingPipeline, GradingDepth, Job, JobMode

LOG = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)

# Global pipeline and config, set by create_app
pipeline: Optional[ChunkingPipeline] = None
app_configs: Optional[ConfigType] = None


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    provider: str = Field(default="openai")
    model: Optional[str] = Field(default=None)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)


class GradeRequest(_Request):
    """Body of POST /api/grade."""
    assignment_text: str = Field(default="", alias="assignmentText")
    grading_text: str = Field(default="", alias="gradingText")
    student_text: str = Field(alias="studentText", min_length=1)
    grading_depth: Optional[GradingDepth] = Field(default=None, alias="gradingDepth")


class RewriteRequest(_Request):
    """Body of POST /api/rewrite."""
    input_text: str = Field(alias="inputText", min_length=1)
    style_sample: str = Field(default="", alias="styleSample")
    custom_instructions: str = Field(default="", alias="customInstructions")


class ExemplarRequest(_Request):
    """Body of POST /api/exemplar."""
    assignment_text: str = Field(alias="assignmentText", min_length=1)
    reference_text: str = Field(default="", alias="referenceText")
    instructions_text: str = Field(default="", alias="instructionsText")
    required_words: Optional[int] = Field(default=None, alias="requiredWords", ge=1)


def create_app(configs: ConfigType, provider_factory: Optional[ProviderFactory] = None) -> Flask:
    """
    Create and configure the Flask app.

    Args:
        configs: Configuration dictionary
        provider_factory: Optional provider factory override
    """
    global pipeline, app_configs
    app_configs = configs
    pipeline = ChunkingPipeline(configs, provider_factory)
    LOG.info("Flask app created and configured")
    return app


def run_server(host: str = '127.0.0.1', port: int = 5000, debug: bool = False):
    """Run the Flask development server."""
    app.run(host=host, port=port, debug=debug)


def _run_job(job: Job):
    """Run job and map pipeline errors to JSON error responses."""
    if pipeline is None:
        return None, (jsonify({'error': 'Application not initialized'}), 500)
    try:
        return pipeline.run_sync(job), None
    except AllProvidersFailedError as e:
        LOG.error("All providers failed for %s job: %s", job.mode.value, e)
        return None, (jsonify({'error': AllProvidersFailedError.USER_MESSAGE,
                               'attempts': [list(a) for a in e.attempts]}), 503)
    except ProviderConfigError as e:
        LOG.error("Provider configuration error: %s", e)
        return None, (jsonify({'error': str(e)}), 500)


def _validation_error(e: ValidationError):
    return jsonify({'error': 'Invalid request data',
                    'errors': e.errors(include_url=False, include_context=False)}), 400


@app.route('/api/grade', methods=['POST'])
def grade():
    """Grade a student submission, chunking it if it is too large."""
    try:
        body = GradeRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _validation_error(e)

    job = Job(
        assignment_text=body.assignment_text,
        instructions_text=body.grading_text,
        target_text=body.student_text,
        provider=body.provider,
        model=body.model,
        temperature=body.temperature,
        mode=JobMode.GRADE,
        depth=body.grading_depth,
    )
    result, error = _run_job(job)
    if error:
        return error
    return jsonify({
        'result': result.combined_text,
        'grade': str(result.overall_grade) if result.overall_grade else None,
        'providerChain': result.provider_chain,
        'chunked': result.chunked,
        'chunkCount': result.chunk_count,
    })


@app.route('/api/rewrite', methods=['POST'])
def rewrite():
    """Rewrite text in the style of an optional sample."""
    try:
        body = RewriteRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _validation_error(e)

    job = Job(
        assignment_text=body.style_sample,
        instructions_text=body.custom_instructions,
        target_text=body.input_text,
        provider=body.provider,
        model=body.model,
        temperature=body.temperature,
        mode=JobMode.REWRITE,
    )
    result, error = _run_job(job)
    if error:
        return error
    return jsonify({
        'rewrittenText': result.combined_text,
        'providerChain': result.provider_chain,
        'chunked': result.chunked,
        'failedChunks': result.failed_chunks,
    })


@app.route('/api/exemplar', methods=['POST'])
def exemplar():
    """Generate an exemplary response to an assignment."""
    try:
        body = ExemplarRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _validation_error(e)

    job = Job(
        assignment_text=body.assignment_text,
        instructions_text=body.instructions_text,
        target_text=body.reference_text,
        provider=body.provider,
        model=body.model,
        temperature=body.temperature,
        mode=JobMode.EXEMPLAR,
        required_words=body.required_words,
    )
    result, error = _run_job(job)
    if error:
        return error
    return jsonify({
        'result': result.combined_text,
        'providerChain': result.provider_chain,
        'chunked': result.chunked,
        'chunkCount': result.chunk_count,
        'failedChunks': result.failed_chunks,
    })


@app.route('/api/check-services', methods=['GET'])
def check_services():
    """Report which providers have credentials configured."""
    if app_configs is None:
        return jsonify({'error': 'Application not initialized'}), 500
    return jsonify({'services': available_providers(app_configs)})

"""Tests for the chunking pipeline end to end with in-memory providers."""

import re

import pytest

from gradeflow.libs.errors import AllProvidersFailedError, ProviderCallError
from gradeflow.tools.chunked_processing import (
    ChunkingPipeline, Job, JobMode, plan_part_words, process_with_chunking
)

ASSIGNMENT = "Write an essay."
INSTRUCTIONS = "Grade it."


def _job(text, mode=JobMode.GRADE, provider="openai"):
    return Job(assignment_text=ASSIGNMENT, instructions_text=INSTRUCTIONS,
               target_text=text, provider=provider, mode=mode)


def _grader(name, score="8/10"):
    """Respond to chunk prompts with a section score and to synthesis with a grade."""
    def respond(prompt):
        if "SECTION ANALYSES" in prompt:
            return "GRADE: 40/50\nSolid paper overall."
        return f"Analysis by {name}. SECTION SCORE: {score}"
    return respond


class TestDirectPath:
    """Test jobs that fit in one call."""

    @pytest.mark.asyncio
    async def test_small_job_makes_exactly_one_call(self, config, fake_provider, make_factory):
        openai = fake_provider("openai", respond=lambda prompt: "GRADE: 42/50\n**Good** work.")
        anthropic = fake_provider("anthropic")
        pipeline = ChunkingPipeline(config, make_factory(openai, anthropic))

        result = await pipeline.run(_job(" ".join(["word"] * 200)))

        assert len(openai.prompts) == 1
        assert anthropic.prompts == []
        assert result.chunked is False
        assert result.chunk_count == 1
        assert result.provider_chain == ["openai"]
        assert result.combined_text == "GRADE: 42/50\nGood work."
        assert str(result.overall_grade) == "GRADE: 42/50"

    @pytest.mark.asyncio
    async def test_direct_fallback(self, config, fake_provider, make_factory):
        pipeline = ChunkingPipeline(config, make_factory(
            fake_provider("openai", fail=True), fake_provider("anthropic", respond=lambda p: "Rewritten.")
        ))

        result = await pipeline.run(_job("Some text.", JobMode.REWRITE))

        assert result.provider_chain == ["anthropic"]
        assert result.overall_grade is None

    def test_run_sync(self, config, fake_provider, make_factory):
        pipeline = ChunkingPipeline(config, make_factory(fake_provider("openai")))
        assert pipeline.run_sync(_job("Tiny.", JobMode.EXEMPLAR)).combined_text == "Output from openai."


class TestChunkedGrading:
    """Test grading jobs split into chunks."""

    @pytest.mark.asyncio
    async def test_chunk_retried_on_fallback_provider(self, small_chunk_config, three_paragraphs,
                                                      fake_provider, make_factory):
        """Test that only the failing chunk moves to the fallback provider."""
        def openai_respond(prompt):
            if "CHUNK 2 OF 3" in prompt:
                raise ProviderCallError("openai", "rate limited")
            return _grader("openai")(prompt)

        openai = fake_provider("openai", respond=openai_respond)
        anthropic = fake_provider("anthropic", respond=_grader("anthropic", "6/10"))
        pipeline = ChunkingPipeline(small_chunk_config, make_factory(openai, anthropic))

        result = await pipeline.run(_job(three_paragraphs))

        assert result.chunked is True
        assert result.chunk_count == 3
        assert result.provider_chain == ["openai", "anthropic", "openai", "openai"]
        assert [s.earned for s in result.per_chunk_scores] == [8, 6, 8]
        assert result.combined_text == "GRADE: 40/50\nSolid paper overall."

        # Each paragraph was sent once; only the failed one was retried
        graded = [p for p in openai.prompts + anthropic.prompts if "CHUNK" in p]
        for word in ("alpha", "beta", "gamma"):
            assert sum(word in p for p in graded) == (2 if word == "beta" else 1)
        assert sum("beta" in p for p in anthropic.prompts) == 1

    @pytest.mark.asyncio
    async def test_synthesis_sees_chunks_in_order(self, small_chunk_config, three_paragraphs,
                                                  fake_provider, make_factory):
        openai = fake_provider("openai", respond=_grader("openai"))
        pipeline = ChunkingPipeline(small_chunk_config, make_factory(openai))

        await pipeline.run(_job(three_paragraphs))

        synthesis = openai.prompts[-1]
        assert "SECTION ANALYSES" in synthesis
        assert synthesis.index("part 1 of 3") < synthesis.index("part 2 of 3") < synthesis.index("part 3 of 3")

    @pytest.mark.asyncio
    async def test_parallel_chunks_keep_order(self, small_chunk_config, three_paragraphs,
                                              fake_provider, make_factory):
        """Test that completion order does not change result order."""
        small_chunk_config['chunking'].update(max_concurrency=3, use_synthesis_pass=False)

        def respond(prompt):
            word = next(w for w in ("alpha", "beta", "gamma") if w in prompt)
            return f"Notes on {word}. SECTION SCORE: 5/10"

        # The first chunk finishes last
        openai = fake_provider("openai", respond=respond,
                               delay=lambda prompt: 0.05 if "alpha" in prompt else 0.0)
        pipeline = ChunkingPipeline(small_chunk_config, make_factory(openai))

        result = await pipeline.run(_job(three_paragraphs))

        text = result.combined_text
        assert text.index("Notes on alpha") < text.index("Notes on beta") < text.index("Notes on gamma")
        assert text.startswith("GRADE: 5/10")

    @pytest.mark.asyncio
    async def test_failed_synthesis_falls_back_to_accumulation(self, small_chunk_config, three_paragraphs,
                                                               fake_provider, make_factory):
        def respond(prompt):
            if "SECTION ANALYSES" in prompt:
                raise ProviderCallError("openai", "context length exceeded")
            return "Fine. SECTION SCORE: 9/10"

        small_chunk_config['fallback']['priority'] = ['openai']
        pipeline = ChunkingPipeline(small_chunk_config, make_factory(fake_provider("openai", respond=respond)))

        result = await pipeline.run(_job(three_paragraphs))

        assert str(result.overall_grade) == "GRADE: 9/10"
        assert result.provider_chain == ["openai", "openai", "openai"]
        assert "Part 3 of 3:" in result.combined_text

    @pytest.mark.asyncio
    async def test_exhausted_chunk_fails_job(self, small_chunk_config, three_paragraphs,
                                             fake_provider, make_factory):
        def respond(prompt):
            if "CHUNK 3 OF 3" in prompt:
                raise ProviderCallError("openai", "server error")
            return "SECTION SCORE: 1/2"

        small_chunk_config['fallback']['priority'] = ['openai']
        pipeline = ChunkingPipeline(small_chunk_config, make_factory(fake_provider("openai", respond=respond)))

        with pytest.raises(AllProvidersFailedError):
            await pipeline.run(_job(three_paragraphs))

    @pytest.mark.asyncio
    async def test_exhausted_chunk_fails_concurrent_job(self, small_chunk_config, three_paragraphs,
                                                        fake_provider, make_factory):
        """Test that grading stays all-or-nothing when chunks run concurrently."""
        small_chunk_config['chunking']['max_concurrency'] = 3

        def respond(prompt):
            if "beta" in prompt:
                raise ProviderCallError("upstream", "server error")
            return "SECTION SCORE: 1/2"

        openai = fake_provider("openai", respond=respond)
        anthropic = fake_provider("anthropic", respond=respond)
        pipeline = ChunkingPipeline(small_chunk_config, make_factory(openai, anthropic))

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await pipeline.run(_job(three_paragraphs))

        assert len(exc_info.value.attempts) == 1
        assert exc_info.value.attempts[0][0] == "anthropic"
        assert sum("beta" in p for p in anthropic.prompts) == 1
        assert not any("SECTION ANALYSES" in p for p in openai.prompts + anthropic.prompts)


class TestChunkedRewrite:
    """Test sequential rewrite and exemplar jobs."""

    @pytest.mark.asyncio
    async def test_previous_output_is_carried_forward(self, small_chunk_config, three_paragraphs,
                                                      fake_provider, make_factory):
        counter = iter(range(1, 10))
        openai = fake_provider("openai", respond=lambda prompt: f"Rewritten section number {next(counter)}.")
        pipeline = ChunkingPipeline(small_chunk_config, make_factory(openai))

        result = await pipeline.run(_job(three_paragraphs, JobMode.REWRITE))

        assert len(openai.prompts) == 3
        assert "Rewritten section number 1." in openai.prompts[1]
        assert "Rewritten section number 2." in openai.prompts[2]
        assert result.combined_text == (
            "Rewritten section number 1.\n\nRewritten section number 2.\n\nRewritten section number 3."
        )
        assert result.provider_chain == ["openai"] * 3

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_original(self, small_chunk_config, three_paragraphs,
                                                  fake_provider, make_factory):
        def respond(prompt):
            if "part 2 of 3" in prompt:
                raise ProviderCallError("openai", "timed out after 120s")
            return "Rewritten."

        small_chunk_config['fallback']['priority'] = ['openai']
        pipeline = ChunkingPipeline(small_chunk_config, make_factory(fake_provider("openai", respond=respond)))

        result = await pipeline.run(_job(three_paragraphs, JobMode.REWRITE))

        assert result.failed_chunks == [1]
        assert "[Section 2 could not be rewritten; original text kept] beta beta" in result.combined_text

    @pytest.mark.asyncio
    async def test_every_chunk_failing_raises(self, small_chunk_config, three_paragraphs,
                                              fake_provider, make_factory):
        pipeline = ChunkingPipeline(small_chunk_config, make_factory(
            fake_provider("openai", fail=True), fake_provider("anthropic", fail=True)
        ))
        with pytest.raises(AllProvidersFailedError):
            await pipeline.run(_job(three_paragraphs, JobMode.REWRITE))

    @pytest.mark.asyncio
    async def test_recombined_rewrite_has_no_markup(self, small_chunk_config, three_paragraphs,
                                                    fake_provider, make_factory):
        openai = fake_provider("openai", respond=lambda prompt: "## Part\nThe **rewritten** text [1].\n```\nx\n```")
        pipeline = ChunkingPipeline(small_chunk_config, make_factory(openai))

        result = await pipeline.run(_job(three_paragraphs, JobMode.REWRITE))

        text = result.combined_text
        assert "#" not in text
        assert "**" not in text
        assert "```" not in text
        assert not re.search(r"\[\d+\]", text)

    @pytest.mark.asyncio
    async def test_exemplar_chunks(self, small_chunk_config, three_paragraphs, fake_provider, make_factory):
        openai = fake_provider("openai", respond=lambda prompt: "Exemplary paragraph.")
        pipeline = ChunkingPipeline(small_chunk_config, make_factory(openai))

        result = await pipeline.run(_job(three_paragraphs, JobMode.EXEMPLAR))

        assert result.chunk_count == 3
        assert "FIRST" in openai.prompts[0]
        assert "FINAL" in openai.prompts[2]


class TestBlankTarget:
    """Test jobs whose framing is large but whose target text is empty."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", [JobMode.EXEMPLAR, JobMode.REWRITE])
    async def test_long_prompt_without_text_runs_directly(self, config, fake_provider, make_factory, mode):
        openai = fake_provider("openai", respond=lambda prompt: "A complete answer.")
        pipeline = ChunkingPipeline(config, make_factory(openai))
        job = Job(assignment_text="prompt " * 7000, target_text="", provider="openai", mode=mode)

        result = await pipeline.run(job)

        assert len(openai.prompts) == 1
        assert result.combined_text == "A complete answer."
        assert result.chunked is False
        assert result.chunk_count == 1

    @pytest.mark.asyncio
    async def test_grading_without_submission_text_runs_directly(self, config, fake_provider, make_factory):
        openai = fake_provider("openai", respond=lambda prompt: "GRADE: 0/10\nNothing was submitted.")
        pipeline = ChunkingPipeline(config, make_factory(openai))
        job = Job(assignment_text="prompt " * 7000, target_text="  \n", provider="openai")

        result = await pipeline.run(job)

        assert len(openai.prompts) == 1
        assert "SECTION ANALYSES" not in openai.prompts[0]
        assert result.chunk_count == 1
        assert str(result.overall_grade) == "GRADE: 0/10"


class TestExemplarLength:
    """Test exemplars planned from the requested word count."""

    def test_plan_part_words(self):
        assert plan_part_words(2000, 800) == [800, 800, 400]
        assert plan_part_words(1600, 800) == [800, 800]
        assert plan_part_words(1000, 800, parts=4) == [250, 250, 250, 250]

    @pytest.mark.asyncio
    async def test_long_exemplar_is_written_in_parts(self, config, fake_provider, make_factory):
        counter = iter(range(1, 10))
        openai = fake_provider("openai", respond=lambda prompt: f"Exemplar part number {next(counter)}.")
        pipeline = ChunkingPipeline(config, make_factory(openai))
        job = Job(assignment_text="Write a 2000 word essay on tides.", target_text="",
                  provider="openai", mode=JobMode.EXEMPLAR, required_words=2000)

        result = await pipeline.run(job)

        assert len(openai.prompts) == 3
        assert "FIRST part (approximately 800 words)" in openai.prompts[0]
        assert "MIDDLE part 2 (approximately 800 words)" in openai.prompts[1]
        assert "Exemplar part number 1." in openai.prompts[1]
        assert "FINAL part (approximately 400 words)" in openai.prompts[2]
        assert "at least 2000 words" in openai.prompts[2]
        assert result.combined_text == (
            "Exemplar part number 1.\n\nExemplar part number 2.\n\nExemplar part number 3."
        )
        assert result.chunked is True
        assert result.chunk_count == 3

    @pytest.mark.asyncio
    async def test_small_reference_is_shown_to_every_part(self, config, fake_provider, make_factory):
        openai = fake_provider("openai")
        pipeline = ChunkingPipeline(config, make_factory(openai))
        job = Job(assignment_text="Discuss tides.", target_text="Key source: the 1998 tide survey.",
                  provider="openai", mode=JobMode.EXEMPLAR, required_words=1200)

        await pipeline.run(job)

        assert len(openai.prompts) == 2
        assert all("1998 tide survey" in p for p in openai.prompts)

    @pytest.mark.asyncio
    async def test_short_exemplar_is_one_call(self, config, fake_provider, make_factory):
        openai = fake_provider("openai")
        pipeline = ChunkingPipeline(config, make_factory(openai))
        job = Job(assignment_text="Discuss tides.", target_text="", provider="openai",
                  mode=JobMode.EXEMPLAR, required_words=900)

        result = await pipeline.run(job)

        assert len(openai.prompts) == 1
        assert "at least 900 words" in openai.prompts[0]
        assert result.chunked is False


class TestChunkSize:
    """Test the per-chunk token budget."""

    def test_uses_smallest_threshold_minus_framing(self, make_factory):
        configs = {'chunking': {'chunk_size_tokens': 10000, 'min_chunk_tokens': 100,
                                'provider_thresholds': {'openai': 8000, 'anthropic': 20000}}}
        pipeline = ChunkingPipeline(configs, make_factory())
        job = Job(assignment_text=" ".join(["word"] * 750), target_text="x", provider="anthropic")

        assert pipeline.chunk_size_for(job, ["anthropic"]) == 10000
        assert pipeline.chunk_size_for(job, ["anthropic", "openai"]) == 7000

    def test_floor_at_min_chunk_tokens(self, make_factory):
        configs = {'chunking': {'min_chunk_tokens': 500, 'provider_thresholds': {'openai': 600}}}
        pipeline = ChunkingPipeline(configs, make_factory())
        job = Job(assignment_text=" ".join(["word"] * 300), target_text="x", provider="openai")

        assert pipeline.chunk_size_for(job, ["openai"]) == 500


@pytest.mark.asyncio
async def test_process_with_chunking(config, fake_provider, make_factory):
    """Test the string-returning entry point."""
    openai = fake_provider("openai", respond=lambda prompt: "GRADE: 9/10\nNice.")
    text = await process_with_chunking(
        provider="openai", model=None, temperature=0.2,
        assignment_text=ASSIGNMENT, instructions_text=INSTRUCTIONS, target_text="A short essay.",
        depth="short", mode="grade", configs=config, provider_factory=make_factory(openai),
    )
    assert text == "GRADE: 9/10\nNice."
    assert "brief" in openai.prompts[0]

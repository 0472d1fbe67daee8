"""Tests for the generation pipeline: plan, then simulation."""

import asyncio

import pytest

from hairvis.flow.generation import GenerationPipeline
from hairvis.models.contracts import ArtifactFailed, ArtifactOk, CapturedPhoto, PhotoSet
from hairvis.services.base import ServiceError
from hairvis.services.mock_stubs import InMemoryActivityLogger
from tests.fakes import FakeGenerationService, make_analysis


def _photo_set(*roles: str) -> PhotoSet:
    return PhotoSet(
        flow_id="flow-1",
        photos=[CapturedPhoto(role=role, data=f"payload-{role}") for role in roles],
    )


class _FirstPlanWaits(FakeGenerationService):
    """The first plan call blocks until released; later calls return at once."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def generate_plan_image(self, photo, analysis):
        if not self.calls:
            self.calls.append("plan")
            await self.release.wait()
            return self.plan
        return await super().generate_plan_image(photo, analysis)


class TestRun:
    """Each artifact settles independently."""

    @pytest.mark.asyncio
    async def test_both_succeed(self):
        service = FakeGenerationService()
        artifacts = await GenerationPipeline(service).run(_photo_set("front"), make_analysis())
        assert artifacts.settled
        assert artifacts.plan_image == "data:image/png;base64,PLAN"
        assert artifacts.simulation_image == "data:image/png;base64,SIM"
        assert service.calls == ["plan", "simulation"]
        assert service.plan_inputs == ["data:image/png;base64,PLAN"]

    @pytest.mark.asyncio
    async def test_plan_failure_still_runs_simulation(self):
        service = FakeGenerationService(plan=ServiceError("model overloaded", status_code=503))
        artifacts = await GenerationPipeline(service).run(_photo_set("front"), make_analysis())
        assert isinstance(artifacts.plan, ArtifactFailed)
        assert artifacts.plan.reason == "unreachable"
        assert isinstance(artifacts.simulation, ArtifactOk)
        assert service.plan_inputs == [None]

    @pytest.mark.asyncio
    async def test_simulation_failure_keeps_plan(self):
        service = FakeGenerationService(simulation=RuntimeError("no image in response"))
        artifacts = await GenerationPipeline(service).run(_photo_set("front"), make_analysis())
        assert artifacts.plan_image is not None
        assert artifacts.simulation_image is None
        assert artifacts.settled

    @pytest.mark.asyncio
    async def test_primary_photo_is_front(self):
        class _Recording(FakeGenerationService):
            async def generate_plan_image(self, photo, analysis):
                self.photo = photo
                return await super().generate_plan_image(photo, analysis)

        service = _Recording()
        await GenerationPipeline(service).run(_photo_set("donor", "front"), make_analysis())
        assert service.photo == "payload-front"

    @pytest.mark.asyncio
    async def test_no_primary_photo(self):
        service = FakeGenerationService()
        artifacts = await GenerationPipeline(service).run(None, make_analysis())
        assert isinstance(artifacts.plan, ArtifactFailed)
        assert isinstance(artifacts.simulation, ArtifactFailed)
        assert service.calls == []

    @pytest.mark.asyncio
    async def test_busy_flag_reset(self):
        pipeline = GenerationPipeline(FakeGenerationService(plan=RuntimeError("x")))
        await pipeline.run(_photo_set("front"), make_analysis())
        assert pipeline.is_generating is False

    @pytest.mark.asyncio
    async def test_busy_until_last_overlapping_run(self):
        service = _FirstPlanWaits()
        pipeline = GenerationPipeline(service)
        slow = asyncio.create_task(pipeline.run(_photo_set("front"), make_analysis()))
        await asyncio.sleep(0)
        await pipeline.run(_photo_set("front"), make_analysis())
        assert pipeline.is_generating is True

        service.release.set()
        await slow
        assert pipeline.is_generating is False


class TestActivity:
    """One activity record per artifact."""

    @pytest.mark.asyncio
    async def test_records(self):
        activity = InMemoryActivityLogger()
        service = FakeGenerationService(plan=ServiceError("boom"))
        await GenerationPipeline(service, activity).run(_photo_set("front"), make_analysis())
        by_type = {record["type"]: record for record in activity.records}
        assert by_type["generate_plan"]["error"].startswith("generic")
        assert by_type["generate_simulation"]["error"] is None
        assert by_type["generate_simulation"]["input"]["guided"] is False

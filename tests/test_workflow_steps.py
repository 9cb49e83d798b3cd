import pytest

from scriptkill.application.websocket.schema.events import EventType
from scriptkill.domain.context.memory.cache_memory_store import CacheMemoryStore
from scriptkill.domain.models.script_records import Character, Clue
from scriptkill.domain.models.session_state import (
    FIRST_INVESTIGATION_PHASE, ParticipantKind, RoleAssignment, Scene, SessionContext,
    StepRecord, WorkflowStep
)
from scriptkill.domain.orchestration.step.character_loading import CharacterLoadingStep, character_sheet
from scriptkill.domain.orchestration.step.first_investigation import FirstInvestigationStep
from scriptkill.domain.orchestration.step.role_allocation import RoleAllocationStep, plan_role_counts
from scriptkill.domain.orchestration.step.scene_loading import SceneLoadingStep
from scriptkill.domain.orchestration.step.script_generation import ScriptGenerationStep, next_script_id
from scriptkill.domain.orchestration.subagent.agent_registry import AgentRegistry

from conftest import ChatModelBook, script_json


def state_for(context: SessionContext, trace=None, attempts: int = 0):
    return {"context": context, "step_trace": trace or [], "generation_attempts": attempts}


async def seed_characters(repository, script_id: str, names):
    await repository.save_characters([
        Character(id=f"{script_id}_character_{i}", script_id=script_id, name=name, order=i,
                  timeline=f"{name} was somewhere at nine")
        for i, name in enumerate(names)
    ])


@pytest.mark.parametrize("total", [1, 2, 4, 5])
@pytest.mark.parametrize("humans", [1, 2, 3, 4, 6])
def test_plan_role_counts_saturates(total, humans):
    human_count, bound, ai_count = plan_role_counts(total, humans)

    assert human_count == humans
    assert ai_count == max(0, total - humans)
    assert bound + ai_count == min(total, humans) + ai_count
    assert bound + ai_count <= total


@pytest.mark.parametrize("requested", [0, -3, None])
def test_plan_role_counts_defaults_to_one_human(requested):
    assert plan_role_counts(4, requested) == (1, 1, 3)


def test_script_ids_are_unique():
    ids = {next_script_id() for _ in range(200)}
    assert len(ids) == 200


@pytest.mark.asyncio
async def test_script_generation_persists_records(agents, repository):
    step = ScriptGenerationStep(agents, repository)

    update = await step.run(state_for(SessionContext(premise="A storm traps guests in a manor")))

    changes = update["context"]
    assert changes["succeeded"] is True
    assert changes["session_id"].startswith("session_")
    assert changes["script_id"].startswith("script_")
    assert changes["total_roles"] == 4
    assert update["generation_attempts"] == 1

    characters = await repository.list_characters(changes["script_id"])
    assert [c.name for c in characters] == ["Butler", "Heiress", "Doctor", "Gardener"]
    assert characters[0].secret == "Was paid to leave the cellar unlocked"
    assert len(await repository.list_clues(changes["script_id"])) == 3


@pytest.mark.asyncio
async def test_script_generation_reports_bad_json(repository):
    agents = AgentRegistry(ChatModelBook(script_writer=["Here is your story: it was the butler."]))
    step = ScriptGenerationStep(agents, repository)

    update = await step.run(state_for(SessionContext(premise="a ghost story")))

    changes = update["context"]
    assert changes["succeeded"] is False
    assert changes["last_error"] == "Scenario is not valid JSON"
    # The session id is recorded even though generation failed
    assert changes["session_id"].startswith("session_")
    assert update["step_trace"][0].succeeded is False


@pytest.mark.asyncio
async def test_script_generation_requires_characters(repository):
    agents = AgentRegistry(ChatModelBook(script_writer=[script_json(characters=[])]))

    update = await ScriptGenerationStep(agents, repository).run(state_for(SessionContext(premise="x")))

    assert update["context"]["last_error"] == "Scenario declares no characters"


@pytest.mark.asyncio
async def test_script_generation_with_unreachable_writer(repository):
    agents = AgentRegistry(ChatModelBook(script_writer=[ConnectionError("no route to host")]))

    update = await ScriptGenerationStep(agents, repository).run(state_for(SessionContext(premise="x")))

    assert update["context"]["last_error"] == "Scenario writer is unavailable"
    assert "no route" not in update["context"]["last_error"]


@pytest.mark.asyncio
async def test_script_generation_rejects_empty_premise(agents, repository):
    update = await ScriptGenerationStep(agents, repository).run(state_for(SessionContext(premise="  ")))

    assert update["context"]["last_error"] == "Premise is empty"


@pytest.mark.asyncio
async def test_role_allocation_binds_humans_then_ai(agents, repository):
    await seed_characters(repository, "script_1", ["Butler", "Heiress", "Doctor", "Gardener"])
    context = SessionContext(
        session_id="s1", script_id="script_1", human_count=2, human_participant_ids=["alice"]
    )

    update = await RoleAllocationStep(agents, repository).run(state_for(context))
    changes = update["context"]

    assignments = changes["role_assignments"]
    assert [(a.participant_id, a.participant_kind, a.role_name) for a in assignments] == [
        ("alice", ParticipantKind.HUMAN, "Butler"),
        ("s1_human_2", ParticipantKind.HUMAN, "Heiress"),
        ("s1_ai_1", ParticipantKind.AI, "Doctor"),
        ("s1_ai_2", ParticipantKind.AI, "Gardener"),
    ]
    assert changes["ai_count"] == 2
    assert changes["human_participant_ids"] == ["alice", "s1_human_2"]
    assert changes["director_id"] == "director_s1"
    assert changes["judge_id"] == "judge_s1"
    assert await agents.get_player("s1_ai_1") is not None
    assert (await repository.get_player("s1_human_2")).kind == ParticipantKind.HUMAN


@pytest.mark.asyncio
@pytest.mark.parametrize("humans", [0, 1, 3, 4, 7])
async def test_role_allocation_never_exceeds_roles(agents, repository, humans):
    await seed_characters(repository, "script_1", ["Butler", "Heiress", "Doctor", "Gardener"])
    context = SessionContext(session_id="s1", script_id="script_1", human_count=humans)

    changes = (await RoleAllocationStep(agents, repository).run(state_for(context)))["context"]

    effective = humans if humans > 0 else 1
    assert changes["ai_count"] == max(0, 4 - effective)
    assert len(changes["role_assignments"]) == min(4, effective) + changes["ai_count"]
    assert len(changes["role_assignments"]) <= 4


@pytest.mark.asyncio
async def test_role_allocation_leaves_role_unassigned_when_player_cannot_be_created(repository):
    def factory(role):
        if role == "player":
            raise RuntimeError("no model for players")
        return ChatModelBook()(role)

    agents = AgentRegistry(factory, cache=CacheMemoryStore(default_ttl=60))
    await seed_characters(repository, "script_1", ["Butler", "Heiress"])
    context = SessionContext(session_id="s1", script_id="script_1", human_count=1)

    changes = (await RoleAllocationStep(agents, repository).run(state_for(context)))["context"]

    assert changes["succeeded"] is True
    assert len(changes["role_assignments"]) == 1
    assert changes["metadata"]["unassigned_roles"] == ["script_1_character_1"]


@pytest.mark.asyncio
async def test_role_allocation_requires_characters(agents, repository):
    context = SessionContext(session_id="s1", script_id="script_empty")

    changes = (await RoleAllocationStep(agents, repository).run(state_for(context)))["context"]

    assert changes["succeeded"] is False
    assert changes["last_error"] == "Script has no roles to allocate"


@pytest.mark.asyncio
async def test_scene_loading_links_clues(repository):
    await repository.save_clues([
        Clue(id="c0", script_id="script_1", name="Broken lantern", scene="Cellar"),
        Clue(id="c1", script_id="script_1", name="Torn letter", scene="Library"),
        Clue(id="c2", script_id="script_1", name="Muddy boots", scene="Greenhouse"),
    ])
    context = SessionContext(session_id="s1", script_id="script_1", generated_script=script_json())

    changes = (await SceneLoadingStep(repository).run(state_for(context)))["context"]

    scenes = changes["scenes"]
    assert [(s.id, s.name, s.clue_ids) for s in scenes] == [
        ("script_1_scene_0", "Library", ["c1"]),
        ("script_1_scene_1", "Cellar", ["c0"]),
    ]
    assert len(await repository.list_scenes("script_1")) == 2


@pytest.mark.asyncio
async def test_scene_loading_requires_scenes(repository):
    context = SessionContext(session_id="s1", script_id="script_1", generated_script=script_json(scenes=[]))

    changes = (await SceneLoadingStep(repository).run(state_for(context)))["context"]

    assert changes["last_error"] == "Script declares no scenes"


def test_character_sheet_skips_empty_fields():
    character = Character(id="c", script_id="s", name="Butler", secret="  ", timeline="21:30 cellar")

    assert character_sheet(character) == [("Name", "Butler"), ("Timeline", "21:30 cellar")]


@pytest.mark.asyncio
async def test_character_loading_feeds_memory_and_notifies_humans(agents, repository, memory, streaming):
    await seed_characters(repository, "script_1", ["Butler", "Heiress"])
    await agents.create_player("s1_ai_1", "Heiress")
    context = SessionContext(session_id="s1", script_id="script_1", role_assignments=[
        RoleAssignment(participant_id="alice", participant_kind=ParticipantKind.HUMAN,
                       role_id="script_1_character_0", role_name="Butler"),
        RoleAssignment(participant_id="s1_ai_1", participant_kind=ParticipantKind.AI,
                       role_id="script_1_character_1", role_name="Heiress"),
    ])

    step = CharacterLoadingStep(agents, repository, memory, streaming)
    changes = (await step.run(state_for(context)))["context"]

    assert changes["loaded_character_ids"] == ["script_1_character_0", "script_1_character_1"]

    sheet = await memory.search_conversation_memory("s1", "s1_ai_1", "Name: Heiress")
    assert sheet and sheet[0].participant_label == "character_sheet"
    timeline = await memory.search_global_timeline_memory("script_1", "Heiress was somewhere at nine",
                                                          role_id="script_1_character_1")
    assert timeline[0].timeline_point == "game_start"

    assert streaming.recipients_of(EventType.SYSTEM) == [["alice"]]
    player = await agents.get_player("s1_ai_1")
    assert len(player.history) == 2


@pytest.mark.asyncio
async def test_first_investigation_skips_after_failed_branch(agents, repository, memory, streaming):
    context = SessionContext(session_id="s1", script_id="script_1")
    trace = [StepRecord(step=WorkflowStep.SCENE_LOADING, succeeded=False, error="Script declares no scenes")]

    step = FirstInvestigationStep(agents, repository, memory, streaming)
    changes = (await step.run(state_for(context, trace)))["context"]

    assert changes["succeeded"] is False
    assert changes["last_error"] == "Skipped because scene_loading failed: Script declares no scenes"


@pytest.mark.asyncio
async def test_first_investigation_publishes_clues(agents, repository, memory, streaming):
    await repository.save_clues([
        Clue(id="c0", script_id="script_1", name="Broken lantern", description="cracked glass"),
        Clue(id="c1", script_id="script_1", name="Torn letter", description="a promise of the manor"),
    ])
    await agents.create_player("s1_ai_1", "Heiress")
    context = SessionContext(
        session_id="s1",
        script_id="script_1",
        scenes=[
            Scene(id="sc0", script_id="script_1", name="Cellar", clue_ids=["c0"]),
            Scene(id="sc1", script_id="script_1", name="Library", clue_ids=["c1", "c0"]),
        ],
        role_assignments=[
            RoleAssignment(participant_id="alice", participant_kind=ParticipantKind.HUMAN,
                           role_id="r0", role_name="Butler"),
            RoleAssignment(participant_id="s1_ai_1", participant_kind=ParticipantKind.AI,
                           role_id="r1", role_name="Heiress"),
        ],
    )

    step = FirstInvestigationStep(agents, repository, memory, streaming)
    changes = (await step.run(state_for(context)))["context"]

    assert changes["current_phase"] == FIRST_INVESTIGATION_PHASE
    assert changes["succeeded"] is True

    clues = await memory.search_global_clue_memory("script_1", "Broken lantern: cracked glass", top_k=5)
    assert {r.id for r in clues} == {"c0", "c1"}

    remembered = await memory.search_conversation_memory("s1", "s1_ai_1", "Torn letter", top_k=5)
    assert {r.participant_label for r in remembered} == {"clue"}
    assert len(remembered) == 2

    human_events = streaming.events_of(EventType.SYSTEM)
    assert len(human_events) == 1
    assert len(human_events[0].data["clues"]) == 2

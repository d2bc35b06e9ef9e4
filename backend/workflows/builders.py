"""Prebuilt workflow definitions.

Pure functions mapping domain inputs (personas, idea text, framework, prior
feedback) to WorkflowDefinition values. Every agent id referenced by a step
is present in the returned roster.
"""

from pydantic import BaseModel

from agents.prompts import (
    CONSOLIDATION_TASK,
    CONSOLIDATOR_PROMPT,
    FEATURE_SURVEY_TASK,
    RESEARCH_PROMPTS,
    SYNTHESIZER_PROMPT,
    get_developer_prompt,
    get_persona_feedback_prompt,
    get_persona_survey_prompt,
    get_ux_designer_prompt,
)
from workflows.types import (
    ParallelStep,
    SequentialStep,
    WorkflowAgent,
    WorkflowDefinition,
)


class Persona(BaseModel):
    """A simulated user interviewed or consulted by a workflow."""

    id: str
    name: str
    backstory: str


def create_feature_survey_workflow(
    personas: list[Persona],
    idea_description: str,
) -> WorkflowDefinition:
    """Survey personas about desired features, then consolidate the feedback.

    Produces one agent per persona (``persona-<id>``) plus a ``consolidator``,
    and two steps: a parallel survey over every persona, then a sequential
    consolidation that runs only after the survey has fully settled.
    """
    persona_ids = [f"persona-{persona.id}" for persona in personas]

    agents = [
        WorkflowAgent(
            id=agent_id,
            role=persona.name,
            system_prompt=get_persona_survey_prompt(persona.name, persona.backstory),
        )
        for agent_id, persona in zip(persona_ids, personas)
    ]
    agents.append(
        WorkflowAgent(
            id="consolidator",
            role="Feature Analyst",
            system_prompt=CONSOLIDATOR_PROMPT,
        )
    )

    return WorkflowDefinition(
        name="feature-survey",
        description="Survey personas about desired features and consolidate feedback",
        agents=agents,
        steps=[
            ParallelStep(
                agents=persona_ids,
                task=FEATURE_SURVEY_TASK.format(idea=idea_description),
            ),
            SequentialStep(
                agent="consolidator",
                task=CONSOLIDATION_TASK,
                dependencies=persona_ids,
            ),
        ],
    )


def create_research_workflow(idea_description: str) -> WorkflowDefinition:
    """Research the competitive landscape, market and users, then synthesize."""
    researcher_ids = list(RESEARCH_PROMPTS)
    agents = [
        WorkflowAgent(id=agent_id, role=role, system_prompt=prompt)
        for agent_id, (role, prompt) in RESEARCH_PROMPTS.items()
    ]
    agents.append(
        WorkflowAgent(
            id="synthesizer",
            role="Research Synthesizer",
            system_prompt=SYNTHESIZER_PROMPT,
        )
    )

    return WorkflowDefinition(
        name="idea-research",
        description="Research competitive landscape, market opportunity, and target users",
        agents=agents,
        steps=[
            ParallelStep(
                agents=researcher_ids,
                task=f"Research this product idea: {idea_description}",
            ),
            SequentialStep(
                agent="synthesizer",
                task="Synthesize all the research findings into a comprehensive report.",
                dependencies=researcher_ids,
            ),
        ],
    )


def create_build_iteration_workflow(
    user_story: str,
    framework: str,
    personas: list[Persona],
    previous_feedback: str | None = None,
) -> WorkflowDefinition:
    """One build iteration: UX design, then development, then persona feedback."""
    feedback_ids = [f"feedback-{persona.id}" for persona in personas]

    agents = [
        WorkflowAgent(
            id="ux-agent",
            role="UX Designer",
            system_prompt=get_ux_designer_prompt(previous_feedback),
        ),
        WorkflowAgent(
            id="developer-agent",
            role="Developer",
            system_prompt=get_developer_prompt(framework),
        ),
    ]
    agents.extend(
        WorkflowAgent(
            id=agent_id,
            role=f"{persona.name} (Feedback)",
            system_prompt=get_persona_feedback_prompt(persona.name, persona.backstory),
        )
        for agent_id, persona in zip(feedback_ids, personas)
    )

    steps: list[SequentialStep | ParallelStep] = [
        SequentialStep(
            agent="ux-agent",
            task=f"Design the user interface for this user story:\n\n{user_story}",
        ),
        SequentialStep(
            agent="developer-agent",
            task="Implement the feature based on the UX design requirements.",
            dependencies=["ux-agent"],
        ),
    ]
    if feedback_ids:
        steps.append(
            ParallelStep(
                agents=feedback_ids,
                task="Look at this screenshot and share your thoughts.",
                dependencies=["developer-agent"],
            )
        )

    return WorkflowDefinition(
        name="build-iteration",
        description="UX -> Developer -> User Feedback iteration",
        agents=agents,
        steps=steps,
    )

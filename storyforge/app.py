from __future__ import annotations

from collections.abc import Mapping

from fastapi import FastAPI

from storyforge.config import Settings, load_settings
from storyforge.generation import GenerationOrchestrator
from storyforge.llm.providers import Provider, build_providers
from storyforge.prompts.resolvers import ResolverRegistry, default_registry
from storyforge.routes import router


class Surfaces:
    """One orchestrator per editor/chat surface, created on first use."""

    def __init__(self, providers: Mapping[str, Provider], registry: ResolverRegistry) -> None:
        self._providers = providers
        self._registry = registry
        self._orchestrators: dict[str, GenerationOrchestrator] = {}

    def get(self, surface: str) -> GenerationOrchestrator:
        orchestrator = self._orchestrators.get(surface)
        if orchestrator is None:
            orchestrator = GenerationOrchestrator(self._providers, self._registry)
            self._orchestrators[surface] = orchestrator
        return orchestrator

    async def stop(self, surface: str) -> None:
        orchestrator = self._orchestrators.get(surface)
        if orchestrator is not None:
            await orchestrator.stop()


def create_app(
    settings: Settings | None = None,
    providers: Mapping[str, Provider] | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    providers = providers if providers is not None else build_providers(settings)
    registry = default_registry()

    app = FastAPI(title="Story Forge")
    app.state.settings = settings
    app.state.providers = providers
    app.state.registry = registry
    app.state.surfaces = Surfaces(providers, registry)
    app.include_router(router, prefix="/api")
    return app

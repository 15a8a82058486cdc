"""Services layer - Business logic and orchestration.

Services coordinate between repositories, integrations, and other services
to implement business use cases. They contain no direct database or
external API access - that's delegated to repositories and integrations.

Import from the submodules directly (app.services.effectiveness,
app.services.rubric, ...). Repositories and integrations import
app.services.errors, so this package must stay free of re-exports.
"""

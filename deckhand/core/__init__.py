"""Task engine: templates, context, runner, tasks and orchestration."""

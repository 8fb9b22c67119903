"""Release deployment tasks shared by every project.

Remote layout under ``deploy_path``::

    .dep/latest_release     number of the newest release
    .dep/deploy.lock        present while a deployment runs
    releases/<n>/           one directory per release
    shared/                 files and directories symlinked into each release
    current -> releases/<n> the published release
"""
from contextlib import contextmanager
from pathlib import Path

from deckhand.core.context import ExecutionContext, lazy, templated
from deckhand.core.errors import ExecutionError, RemoteExecutionError
from deckhand.core.logger import get_logger
from deckhand.core.tasks import TaskRegistry

logger = get_logger(__name__)

DEFAULTS = {
    "branch": "main",
    "keep_releases": 3,
    "shared_files": [],
    "shared_dirs": [],
    "writable_dirs": [],
    "writable_chmod_mode": "0775",
    "bin/php": "php",
    "bin/composer": "composer",
    "composer_options": (
        "install --verbose --prefer-dist --no-progress --no-interaction "
        "--no-dev --optimize-autoloader"
    ),
    "current_path": templated("{{deploy_path}}/current"),
    "release_path": templated("{{deploy_path}}/releases/{{release_name}}"),
}


def release_name(ctx: ExecutionContext) -> str:
    """Name of the newest release, read from the host."""
    result = ctx.run("cat {{deploy_path}}/.dep/latest_release 2>/dev/null || echo 0")
    return result.output


def resolve_active_release_path(ctx: ExecutionContext) -> str:
    """Release path while its directory exists on the host, otherwise current path."""
    with ctx.scope():
        release_path = ctx.pin("release_path")
        if ctx.test("[ -d {{release_path}} ]"):
            return release_path
    return ctx["current_path"]


def remove_remote(ctx: ExecutionContext, path: str) -> None:
    """Remove a remote artifact. Failures are logged, never raised."""
    try:
        result = ctx.run(f"rm {path}", tolerate=True)
    except ExecutionError as e:
        logger.warning(f"Could not remove {ctx.render(path)} from {ctx['alias']}: {e}")
        return
    if not result.ok:
        logger.warning(
            f"Could not remove {ctx.render(path)} from {ctx['alias']}: "
            f"{result.stderr.strip() or f'exit code {result.exit_code}'}"
        )


def fetch_artifact(ctx: ExecutionContext, produce: str, remote_path: str, local_path: str) -> None:
    """Produce a file on the host, download it, then remove it from the host.

    The remote artifact is removed even if the download fails.
    """
    ctx.run(produce)
    try:
        ctx.download(remote_path, local_path)
    finally:
        remove_remote(ctx, remote_path)


@contextmanager
def local_artifact(ctx: ExecutionContext, path: str):
    """Yield a rendered local path that is deleted when the block exits."""
    rendered = ctx.render(path)
    try:
        yield rendered
    finally:
        Path(rendered).unlink(missing_ok=True)


# ── tasks ─────────────────────────────────────────────────────────────

def deploy_info(ctx):
    """Displays info about the deployment"""
    logger.info(f"Deploying {ctx.get('branch')} to {ctx['alias']} ({ctx['hostname']})")


def deploy_setup(ctx):
    """Prepares the host for deployments"""
    ctx.run("mkdir -p {{deploy_path}}")
    with ctx.within("{{deploy_path}}"):
        ctx.run("mkdir -p .dep releases shared")


def deploy_lock(ctx):
    """Locks the deployment"""
    result = ctx.run(
        "if [ -f {{deploy_path}}/.dep/deploy.lock ]; then echo locked; "
        "else touch {{deploy_path}}/.dep/deploy.lock && echo acquired; fi"
    )
    if result.output == "locked":
        raise RemoteExecutionError(
            f"Deploy locked on {ctx['alias']}. "
            f"Run 'dh run deploy:unlock {ctx['alias']}' if no deployment is running.",
            result=result,
            host=ctx["alias"],
        )


def deploy_unlock(ctx):
    """Unlocks the deployment"""
    ctx.run("rm -f {{deploy_path}}/.dep/deploy.lock")


def deploy_release(ctx):
    """Creates the directory for a new release"""
    with ctx.within("{{deploy_path}}"):
        ctx.run(
            "echo $(( $(cat .dep/latest_release 2>/dev/null || echo 0) + 1 )) "
            "> .dep/latest_release"
        )
    ctx.run("mkdir -p {{release_path}}")
    logger.info(f"Release path: {ctx['release_path']}")


def deploy_update_code(ctx):
    """Checks out the repository into the release"""
    ctx.run("git clone --depth 1 --branch {{branch}} {{repository}} {{release_path}}")


def deploy_shared(ctx):
    """Links shared files and directories into the release"""
    for shared_dir in ctx.get("shared_dirs") or []:
        with ctx.scope(item=shared_dir):
            ctx.run(
                "mkdir -p {{deploy_path}}/shared/{{item}} "
                "&& rm -rf {{release_path}}/{{item}} "
                "&& mkdir -p $(dirname {{release_path}}/{{item}}) "
                "&& ln -sfn {{deploy_path}}/shared/{{item}} {{release_path}}/{{item}}"
            )
    for shared_file in ctx.get("shared_files") or []:
        with ctx.scope(item=shared_file):
            ctx.run(
                "mkdir -p $(dirname {{deploy_path}}/shared/{{item}}) "
                "&& touch {{deploy_path}}/shared/{{item}} "
                "&& rm -f {{release_path}}/{{item}} "
                "&& ln -sfn {{deploy_path}}/shared/{{item}} {{release_path}}/{{item}}"
            )


def deploy_writable(ctx):
    """Makes writable directories writable"""
    for writable_dir in ctx.get("writable_dirs") or []:
        with ctx.scope(item=writable_dir):
            ctx.run(
                "cd {{release_path}} && mkdir -p {{item}} "
                "&& chmod -R {{writable_chmod_mode}} {{item}}"
            )


def deploy_vendors(ctx):
    """Installs composer dependencies"""
    ctx.run("cd {{release_path}} && {{bin/composer}} {{composer_options}}")


def deploy_symlink(ctx):
    """Switches the current symlink to the new release"""
    with ctx.within("{{deploy_path}}"):
        ctx.run("ln -sfn releases/{{release_name}} current.tmp && mv -fT current.tmp current")


def deploy_cleanup(ctx):
    """Removes old releases"""
    with ctx.within("{{deploy_path}}/releases"):
        ctx.run("ls -1 | sort -n | head -n -{{keep_releases}} | xargs -r rm -rf")


def deploy_success(ctx):
    """Reports a successful deployment"""
    logger.info(f"Successfully deployed {ctx['alias']}")


def register_common_tasks(registry: TaskRegistry) -> None:
    """Register the release deployment tasks and their defaults."""
    registry.defaults.update(DEFAULTS)
    registry.defaults["release_name"] = lazy(release_name)
    registry.defaults["release_or_current_path"] = lazy(resolve_active_release_path)

    registry.register("deploy:info", deploy_info, hidden=True)
    registry.register("deploy:setup", deploy_setup)
    registry.register("deploy:lock", deploy_lock)
    registry.register("deploy:unlock", deploy_unlock)
    registry.register("deploy:release", deploy_release)
    registry.register("deploy:update_code", deploy_update_code)
    registry.register("deploy:shared", deploy_shared)
    registry.register("deploy:writable", deploy_writable)
    registry.register("deploy:vendors", deploy_vendors)
    registry.register("deploy:symlink", deploy_symlink)
    registry.register("deploy:cleanup", deploy_cleanup)
    registry.register("deploy:success", deploy_success, hidden=True)

    registry.register("deploy:prepare", [
        "deploy:info",
        "deploy:setup",
        "deploy:lock",
        "deploy:release",
        "deploy:update_code",
        "deploy:shared",
        "deploy:writable",
    ], "Prepares a new release")

    registry.register("deploy:publish", [
        "deploy:symlink",
        "deploy:unlock",
        "deploy:cleanup",
        "deploy:success",
    ], "Publishes the release")

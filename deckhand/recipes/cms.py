"""Deployment recipe for CMS projects managed through a PHP console tool.

The console tool (``bin/cms``, TYPO3's ``vendor/bin/typo3`` by default) is an
opaque external process: zero exit on success. Auxiliary cache flushes go
through the best-effort adapter and never block a deployment.
"""
import shlex
from datetime import datetime

from deckhand.core.context import ExecutionContext, lazy, templated
from deckhand.core.logger import get_logger
from deckhand.core.prompts import Confirmation
from deckhand.core.tasks import TaskRegistry
from deckhand.core.transport import ssh_auth_args
from deckhand.recipes.common import fetch_artifact, local_artifact, remove_remote

logger = get_logger(__name__)

DEFAULTS = {
    "cms_webroot": "public",
    "shared_files": [".env"],
    "writable_dirs": ["var", "public/fileadmin", "public/typo3temp"],
    "bin/cms": "vendor/bin/typo3",
    "bin/cachetool": "vendor/bin/cachetool",
    "local/bin/cms": "./vendor/bin/typo3",
    "dump_excludes": ["cf_*", "cache_*", "[bf]e_sessions", "sys_log"],
    "database_dir": "database",
    "backup_dir": "backup",
    "remote_dump": "dump.sql",
    "local_dump": "dump.sql",
    "local_upload": "local.sql",
    "files_folder": templated("{{cms_webroot}}/fileadmin/"),
    "rsync_options": "-avz",
    "rsync_push_options": "--bwlimit=2000",
}

DANGER_BANNER = (
    "#######################################",
    "############### WARNING ###############",
    "#######################################",
)


def dump_options(ctx: ExecutionContext) -> str:
    """database:export arguments excluding cache and session tables."""
    excludes = " ".join(f"-e '{table}'" for table in ctx.get("dump_excludes") or [])
    return f"database:export -c Default {excludes}".rstrip()


def ssh_target(ctx: ExecutionContext) -> str:
    return ctx.require_host().connection_string


def rsync_shell(ctx: ExecutionContext) -> str:
    """Quoted rsync -e value using the same port, key and options as ssh."""
    host = ctx.require_host()
    ssh = ctx.runner.config.ssh_binary if ctx.runner is not None else "ssh"
    args = [ssh, "-p", str(host.port), *ssh_auth_args(host)]
    return shlex.quote(" ".join(shlex.quote(arg) for arg in args))


def timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%d-%H-%M-%S")


# ── console tool tasks ────────────────────────────────────────────────

def language_update(ctx):
    """Updates the language files on the remote server"""
    ctx.run("cd {{release_or_current_path}} && {{bin/php}} {{bin/cms}} language:update")


def database_updateschema(ctx):
    """Updates the database schema on the remote server, does not delete any data"""
    ctx.run("cd {{release_or_current_path}} && {{bin/php}} {{bin/cms}} database:updateschema safe")


def cache_flush(ctx):
    """Flushes the CMS cache on the remote server"""
    ctx.run("cd {{release_or_current_path}} && {{bin/php}} {{bin/cms}} cache:flush")


def cache_warmup(ctx):
    """Warms up the cache on the remote server"""
    ctx.run("cd {{release_or_current_path}} && {{bin/php}} {{bin/cms}} cache:warmup")


def cachetool(subcommand: str, label: str):
    """Build a best-effort cachetool task; the cache may not be installed."""
    def flush(ctx):
        with ctx.scope(cachetool_command=subcommand):
            return ctx.run_best_effort(
                "cd {{release_or_current_path}} && {{bin/php}} {{bin/cachetool}} "
                "{{cachetool_command}} --cli"
            )

    flush.__doc__ = f"Flushes the {label} on the remote server, if installed"
    return flush


def local_updateschema(ctx):
    """Updates the local database schema"""
    ctx.run_local("{{local/bin/cms}} database:updateschema safe")


def local_language_update(ctx):
    """Updates the local language files"""
    ctx.run_local("{{local/bin/cms}} language:update")


def local_cache_flush(ctx):
    """Flushes the local CMS cache"""
    ctx.run_local("{{local/bin/cms}} cache:flush")


# ── database ──────────────────────────────────────────────────────────

def create_database_dir(ctx):
    """Creates git-ignored directories for database dumps"""
    ctx.run_local("mkdir -p {{database_dir}}/local")
    for host in ctx.registry or []:
        with ctx.scope(dump_host=host.alias):
            ctx.run_local("mkdir -p {{database_dir}}/{{dump_host}}")
    ctx.run_local('echo "*" > {{database_dir}}/.gitignore')


def database_download(ctx):
    """Downloads a gzipped database dump from the remote server"""
    ctx.invoke("database:createDatabaseDir")
    ctx.pin("release_or_current_path")
    ctx.set("timestamp", timestamp())
    ctx.run_local("mkdir -p {{database_dir}}/{{alias}}")

    with local_artifact(ctx, "{{local_dump}}"):
        logger.info("Creating DB dump on remote server")
        fetch_artifact(
            ctx,
            "cd {{release_or_current_path}} && {{bin/php}} {{bin/cms}} {{dump_options}} > {{remote_dump}}",
            "{{release_or_current_path}}/{{remote_dump}}",
            "{{local_dump}}",
        )
        ctx.run_local("gzip -c {{local_dump}} > {{database_dir}}/{{alias}}/{{timestamp}}.sql.gz")
    logger.info(f"DB dump saved to {ctx.render('{{database_dir}}/{{alias}}/{{timestamp}}.sql.gz')}")


def database_pull(ctx):
    """Pulls the remote database into the local database"""
    ctx.invoke("database:createDatabaseDir")
    ctx.pin("release_or_current_path")
    ctx.set("timestamp", timestamp())

    logger.info("Creating DB dump on local server")
    with local_artifact(ctx, "{{local_upload}}"):
        ctx.run_local("{{local/bin/cms}} {{dump_options}} > {{local_upload}}")
        ctx.run_local("gzip -c {{local_upload}} > {{database_dir}}/local/{{timestamp}}.sql.gz")

    with local_artifact(ctx, "{{local_dump}}"):
        logger.info("Downloading DB dump from remote server")
        fetch_artifact(
            ctx,
            "cd {{release_or_current_path}} && {{bin/php}} {{bin/cms}} {{dump_options}} > {{remote_dump}}",
            "{{release_or_current_path}}/{{remote_dump}}",
            "{{local_dump}}",
        )
        logger.info("Importing DB dump to local database")
        ctx.run_local("cat {{local_dump}} | {{local/bin/cms}} database:import")

    ctx.invoke("local:database:updateschema")
    ctx.invoke("local:language:update")
    ctx.invoke("local:cache:flush")
    logger.info("DB dump imported")


def database_push(ctx):
    """Pushes the local database to the remote server"""
    ctx.invoke("database:createDatabaseDir")
    ctx.pin("release_or_current_path")

    logger.info("Creating a backup of the remote database in the database folder, just in case")
    ctx.invoke("database:download")

    logger.info("Creating DB dump on local server")
    with local_artifact(ctx, "{{local_upload}}"):
        ctx.run_local("{{local/bin/cms}} {{dump_options}} > {{local_upload}}")
        logger.info("Uploading DB dump to remote server")
        ctx.upload("{{local_upload}}", "{{release_or_current_path}}/{{local_upload}}")

    try:
        logger.info("Importing DB dump to remote database")
        ctx.run(
            "cd {{release_or_current_path}} && cat {{local_upload}} "
            "| {{bin/php}} {{bin/cms}} database:import"
        )
    finally:
        remove_remote(ctx, "{{release_or_current_path}}/{{local_upload}}")

    ctx.invoke("database:updateschema")
    ctx.invoke("language:update")
    ctx.invoke("cache:flush:cms")
    ctx.invoke("cache:warmup")
    logger.info(f"DB pushed to {ctx['hostname']}")


# ── files and backups ─────────────────────────────────────────────────

def files_pull(ctx):
    """Syncs the fileadmin folder from the remote server to the local machine"""
    ctx.run_local(
        "rsync {{rsync_options}} -e {{rsync_shell}} "
        "{{ssh_target}}:{{deploy_path}}/current/{{files_folder}} {{files_folder}}"
    )


def files_push(ctx):
    """Syncs the local fileadmin folder to the remote server"""
    ctx.run_local(
        "rsync {{rsync_options}} -e {{rsync_shell}} {{files_folder}} "
        "{{ssh_target}}:{{deploy_path}}/current/{{files_folder}} {{rsync_push_options}}"
    )


def project_backup(ctx):
    """Backs up the current release, shared files and database to the local machine"""
    ctx.run_local("mkdir -p {{backup_dir}}")
    ctx.run_local('echo "*" > {{backup_dir}}/.gitignore')
    ctx.pin("release_or_current_path")
    with ctx.within("{{deploy_path}}"):
        release_name = ctx.run("cat .dep/latest_release || echo 0").output
    ctx.set("current_release_name", release_name)

    logger.info("Archiving current release")
    fetch_artifact(
        ctx,
        "cd {{deploy_path}} && tar -czf {{current_release_name}}.tar.gz releases/{{current_release_name}}",
        "{{deploy_path}}/{{current_release_name}}.tar.gz",
        "{{backup_dir}}/{{current_release_name}}.tar.gz",
    )

    logger.info("Archiving shared folder")
    fetch_artifact(
        ctx,
        "cd {{deploy_path}} && tar -czf shared.tar.gz shared",
        "{{deploy_path}}/shared.tar.gz",
        "{{backup_dir}}/shared.tar.gz",
    )

    logger.info("Creating DB dump on remote server")
    fetch_artifact(
        ctx,
        "cd {{release_or_current_path}} && {{bin/php}} {{bin/cms}} {{dump_options}} > {{remote_dump}}",
        "{{release_or_current_path}}/{{remote_dump}}",
        "{{backup_dir}}/{{remote_dump}}",
    )
    ctx.run_local("gzip -f {{backup_dir}}/{{remote_dump}}")
    logger.info(f"Backup written to {ctx['backup_dir']}")


def sorting_in_page(ctx):
    """Runs container:sorting-in-page when the container extension is installed"""
    found = ctx.run(
        'cd {{release_or_current_path}} && grep -q "b13/container" composer.json && echo 1 || echo 0'
    )
    if found.output == "0":
        logger.info("Container extension not found in composer.json. Aborting")
        return
    ctx.run("cd {{release_or_current_path}} && {{bin/php}} {{bin/cms}} container:sorting-in-page --apply")


def register_cms_tasks(registry: TaskRegistry) -> None:
    """Register the CMS project tasks, hooks and defaults."""
    registry.defaults.update(DEFAULTS)
    registry.defaults["dump_options"] = lazy(dump_options)
    registry.defaults["ssh_target"] = lazy(ssh_target)
    registry.defaults["rsync_shell"] = lazy(rsync_shell)

    registry.register("language:update", language_update)
    registry.register("database:updateschema", database_updateschema)
    registry.register("cache:flush:cms", cache_flush)
    registry.register("cache:warmup", cache_warmup)
    registry.register("cache:flush:apcu", cachetool("apcu:cache:clear", "APCu cache"))
    registry.register("cache:flush:opcache", cachetool("opcache:reset", "OPcache"))
    registry.register("cache:flush:stat", cachetool("stat:clear", "file status cache"))

    registry.register("deploy", [
        "deploy:prepare",
        "deploy:vendors",
        "database:updateschema",
        "language:update",
        "cache:flush:cms",
        "cache:warmup",
        "deploy:publish",
    ], "Deploys a CMS project")

    registry.on_failure("deploy", "deploy:unlock")
    # after the symlink is switched, flush the php caches
    registry.after("deploy:symlink", "cache:flush:opcache")
    registry.after("deploy:symlink", "cache:flush:apcu")
    registry.after("deploy:symlink", "cache:flush:stat")

    registry.register("local:database:updateschema", local_updateschema, hidden=True)
    registry.register("local:language:update", local_language_update, hidden=True)
    registry.register("local:cache:flush", local_cache_flush, hidden=True)

    registry.register("database:createDatabaseDir", create_database_dir, hidden=True)
    registry.register("database:download", database_download)
    registry.register("database:pull", database_pull)
    registry.register("database:push", database_push, confirmations=[
        Confirmation(
            "DANGER: Do you really want to push your local database to the remote server? "
            "This might break your remote installation!"
        ),
        Confirmation(
            "Please enter the hostname of the remote server to confirm",
            expected="{{hostname}}",
            warning=DANGER_BANNER + (
                "You are about to push your local database to the remote server",
                "This will overwrite the remote database with your local database",
            ),
        ),
    ])

    registry.register("files:pull", files_pull, confirmations=[
        Confirmation(
            "Do you really want to pull the fileadmin folder from the remote server? "
            "This will overwrite your local fileadmin folder!"
        ),
    ])
    registry.register("files:push", files_push, confirmations=[
        Confirmation(
            "Do you really want to push the fileadmin folder from your local machine? "
            "This will overwrite the fileadmin folder on the remote server!"
        ),
        Confirmation(
            "Please enter the hostname of the remote server to confirm",
            expected="{{hostname}}",
            warning=DANGER_BANNER + (
                "You are about to push your local fileadmin to the remote server",
                "This will overwrite the remote fileadmin with your local fileadmin",
            ),
        ),
    ])

    registry.register("project:backup", project_backup)
    registry.register("command:sorting-in-page", sorting_in_page)

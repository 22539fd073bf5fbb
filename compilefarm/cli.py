import pathlib

import click
import uvloop

from compilefarm.env import Env, load_env
from compilefarm.errors import CompileFarmError
from compilefarm.paths import Project
from compilefarm.session import BuildSession


def project_options(command):
    options = [
        click.option(
            "--distributed",
            default=None,
            type=str,
            help="Comma separated host[:slots[:port]] slave list.",
        ),
        click.option("--project-name", default=None, type=str),
        click.option(
            "--root",
            default=".",
            type=click.Path(file_okay=False, path_type=pathlib.Path),
        ),
        click.option(
            "--source-dir",
            "source_dirs",
            multiple=True,
            type=click.Path(path_type=pathlib.Path),
        ),
        click.option(
            "--object-dir",
            default=None,
            type=click.Path(path_type=pathlib.Path),
        ),
        click.option(
            "-j",
            "--jobs",
            default=None,
            type=int,
            help="Local parallelism. Defaults to COMPILEFARM_LOCAL_PARALLELISM.",
        ),
        click.option("--log-level", default=None, type=str),
        click.option("--env-file", default=None, type=str),
    ]

    for option in reversed(options):
        command = option(command)

    return command


def create_session(
    project_name: str | None,
    root: pathlib.Path,
    source_dirs: tuple[pathlib.Path, ...],
    object_dir: pathlib.Path | None,
    jobs: int | None,
    log_level: str | None,
    env_file: str | None,
) -> BuildSession:
    root = root.absolute()

    override = Env(COMPILEFARM_LOG_LEVEL=log_level) if log_level else None
    env = load_env(Env, env_file=env_file, override=override)

    project = Project(
        name=project_name or root.name,
        root=root,
        source_dirs=list(source_dirs),
        object_dir=object_dir,
    )

    return BuildSession(
        project,
        env=env,
        local_parallelism=jobs,
    )


@click.group(help="Distribute compilations to remote compile slaves.")
def compilefarm():
    pass


@compilefarm.command(help="Register the declared slaves and report their state.")
@project_options
def probe(
    distributed: str | None,
    project_name: str | None,
    root: pathlib.Path,
    source_dirs: tuple[pathlib.Path, ...],
    object_dir: pathlib.Path | None,
    jobs: int | None,
    log_level: str | None,
    env_file: str | None,
):
    try:
        session = create_session(
            project_name, root, source_dirs, object_dir, jobs, log_level, env_file
        )

        uvloop.run(run_probe(session, distributed))

    except CompileFarmError as err:
        raise click.ClickException(str(err)) from err


async def run_probe(session: BuildSession, distributed: str | None):
    async with session:
        session.install_signal_handlers()

        session.declare(distributed)
        await session.register()

        for worker in session.registry.workers():
            status = worker.state.value
            if worker.last_error:
                status = f"{status} ({worker.last_error})"

            click.echo(f"{worker.host}:{worker.port}\t{worker.slots} slots\t{status}")

        click.echo(f"total capacity: {session.capacity.total_capacity()}")

        await session.shutdown(clean=False)


@compilefarm.command(help="Remove a project's synced sources and objects from the slaves.")
@project_options
def clean(
    distributed: str | None,
    project_name: str | None,
    root: pathlib.Path,
    source_dirs: tuple[pathlib.Path, ...],
    object_dir: pathlib.Path | None,
    jobs: int | None,
    log_level: str | None,
    env_file: str | None,
):
    try:
        session = create_session(
            project_name, root, source_dirs, object_dir, jobs, log_level, env_file
        )

        uvloop.run(run_clean(session, distributed))

    except CompileFarmError as err:
        raise click.ClickException(str(err)) from err


async def run_clean(session: BuildSession, distributed: str | None):
    async with session:
        session.install_signal_handlers()

        session.declare(distributed)
        await session.register()

        results = await session.clean_up()
        for host, sent in results.items():
            click.echo(f"{host}\t{'cleaned' if sent else 'unreachable'}")

        await session.shutdown(clean=False)


def main():
    compilefarm()

"""Command-line interface for package_validator.

Provides subcommands to check package lists for moved or deleted
repositories, expand them with their dependencies and maintain the list
files.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn

from package_validator.cache import CacheStore, manifest_cache, repository_cache
from package_validator.clients import GitHubClient, PackageIndexAPI, RedirectResolver
from package_validator.config import ValidatorConfig
from package_validator.crawler import CrawlPolicy, DependencyCrawler, DiscoveryResult
from package_validator.errors import InputError
from package_validator.limiter import ConcurrencyLimiter
from package_validator.manifest import ManifestDecoder
from package_validator.models import PackageURL
from package_validator.reconcile import apply_deny_list, merge_lists
from package_validator.redirect_check import check_redirects
from package_validator.storage import (
    dumps_package_list,
    load_deny_list,
    load_package_list,
    load_url_strings,
    save_package_list,
)

app = typer.Typer(
    name="package-validator",
    help="Validate and expand package index lists.",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)
logger = logging.getLogger("package_validator")

DEFAULT_INDEX_URL = "https://swiftpackageindex.com"

InputOption = Annotated[
    Optional[Path],
    typer.Option("--input", "-i", help="Read package URLs from a JSON file"),
]
UrlsArgument = Annotated[
    Optional[list[str]],
    typer.Argument(help="Package URLs to check", show_default=False),
]
OutputOption = Annotated[
    Optional[Path],
    typer.Option("--output", "-o", help="Save the updated list to this file"),
]
LimitOption = Annotated[
    Optional[int],
    typer.Option("--limit", "-l", min=1, help="Limit the number of packages to check"),
]
ConcurrencyOption = Annotated[
    int,
    typer.Option("--concurrency", "-c", min=1, help="Maximum concurrent checks"),
]
TokenOption = Annotated[
    Optional[str],
    typer.Option(
        "--github-token",
        envvar="GITHUB_TOKEN",
        help="GitHub API token for higher rate limits",
    ),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable verbose output"),
]
UseCacheOption = Annotated[
    bool,
    typer.Option("--cache/--no-cache", help="Persist API lookups between runs"),
]
CachePathOption = Annotated[
    Optional[Path],
    typer.Option("--cache-path", help="Cache database file"),
]
UsePackageListOption = Annotated[
    bool,
    typer.Option("--use-package-list", help="Check the canonical package list"),
]


def _setup_logging(verbose: bool) -> None:
    """Configure logging level based on verbosity flag."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.getLogger("package_validator").setLevel(level)


def _load_input(
    input_file: Optional[Path],
    urls: Optional[list[str]],
    use_package_list: Optional[bool] = None,
) -> Optional[list[PackageURL]]:
    """Read the package list from exactly one input source.

    Args:
        input_file: JSON package list file.
        urls: Package URLs given as arguments.
        use_package_list: Whether to use the canonical package list; None
            for commands that do not offer it.

    Returns:
        The packages, or None when the canonical package list has to be
        fetched.

    Raises:
        InputError: If not exactly one source is given, or the input is invalid.
    """
    if [input_file is not None, bool(urls), bool(use_package_list)].count(True) != 1:
        if use_package_list is None:
            raise InputError("Specify either an input file (--input) or a list of package URLs")
        raise InputError(
            "Specify either an input file (--input), --use-package-list, "
            "or a list of package URLs"
        )
    if use_package_list:
        return None
    if input_file is not None:
        return load_package_list(input_file)
    try:
        return [PackageURL.parse(url) for url in urls or []]
    except ValueError as e:
        raise InputError(str(e)) from e


def _fail(message: object) -> typer.Exit:
    err_console.print(f"[red]Error:[/red] {escape(str(message))}")
    return typer.Exit(code=1)


def _emit(urls: list[PackageURL], output: Optional[Path]) -> None:
    if output is not None:
        save_package_list(urls, output)
        console.print(f"[green]Saved:[/green] {output} ({len(urls)} packages)")
    else:
        typer.echo(dumps_package_list(urls), nl=False)


@contextlib.asynccontextmanager
async def _clients(
    config: ValidatorConfig, use_cache: bool
) -> AsyncIterator[tuple[GitHubClient, RedirectResolver, ManifestDecoder]]:
    """Build the clients for one run, sharing one pair of caches.

    With `use_cache` the caches are loaded from and saved back to the
    SQLite store.
    """
    repositories = repository_cache()
    manifests = manifest_cache()
    store = CacheStore(config.cache_path) if use_cache else None
    if store is not None:
        store.load(repositories)
        store.load(manifests)

    github = GitHubClient.from_config(config, cache=repositories)
    redirects = RedirectResolver.from_config(config)
    try:
        yield github, redirects, ManifestDecoder(github, manifests, config.dump_command)
    finally:
        await github.close()
        await redirects.close()
        if store is not None:
            store.save(repositories)
            store.save(manifests)


def _crawler(
    config: ValidatorConfig,
    github: GitHubClient,
    redirects: RedirectResolver,
    manifests: ManifestDecoder,
) -> DependencyCrawler:
    return DependencyCrawler(
        github,
        redirects,
        manifests,
        limiter=ConcurrencyLimiter(config.concurrency),
        policy=CrawlPolicy.from_config(config),
        retry_delay=config.retry_delay,
    )


async def _fetch_package_list(config: ValidatorConfig) -> list[PackageURL]:
    async with GitHubClient.from_config(config) as github:
        return await github.fetch_package_list()


async def _run_check_redirects(
    urls: list[PackageURL], config: ValidatorConfig, limit: Optional[int]
) -> list[PackageURL]:
    async with RedirectResolver.from_config(config) as resolver:
        return await check_redirects(
            urls, resolver, limiter=ConcurrencyLimiter(config.concurrency), limit=limit
        )


async def _run_check_dependencies(
    urls: list[PackageURL],
    config: ValidatorConfig,
    limit: Optional[int],
    use_cache: bool,
    chunk_index: Optional[int] = None,
    number_of_chunks: Optional[int] = None,
) -> list[PackageURL]:
    async with _clients(config, use_cache) as (github, redirects, manifests):
        crawler = _crawler(config, github, redirects, manifests)
        return await crawler.expand(
            urls,
            limit=limit,
            retries=config.retries,
            chunk_index=chunk_index,
            number_of_chunks=number_of_chunks,
        )


async def _run_check_index(
    urls: list[PackageURL],
    config: ValidatorConfig,
    api_base_url: str,
    api_token: str,
    limit: Optional[int],
    use_cache: bool,
) -> DiscoveryResult:
    async with PackageIndexAPI(api_base_url, api_token, user_agent=config.user_agent) as api:
        records = await api.fetch_dependencies()
    async with _clients(config, use_cache) as (github, redirects, manifests):
        crawler = _crawler(config, github, redirects, manifests)
        return await crawler.discover_unindexed(records, seeds=urls, limit=limit)


@app.command("check-redirects")
def check_redirects_command(
    urls: UrlsArgument = None,
    input_file: InputOption = None,
    use_package_list: UsePackageListOption = False,
    output: OutputOption = None,
    limit: LimitOption = None,
    concurrency: ConcurrencyOption = 1,
    github_token: TokenOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Check packages for redirects and deleted repositories.

    Moved packages are replaced with their new location, deleted ones are
    removed.
    """
    _setup_logging(verbose)
    try:
        packages = _load_input(input_file, urls, use_package_list)
    except InputError as e:
        raise _fail(e)

    config = ValidatorConfig.from_env(github_token=github_token, concurrency=concurrency)
    config.warn_if_anonymous()

    try:
        if packages is None:
            packages = asyncio.run(_fetch_package_list(config))
        updated = asyncio.run(_run_check_redirects(packages, config, limit))
    except Exception as e:
        raise _fail(e)

    console.print(f"Checked [bold]{len(packages)}[/bold] packages, {len(updated)} remain")
    _emit(updated, output)


@app.command("check-dependencies")
def check_dependencies_command(
    urls: UrlsArgument = None,
    input_file: InputOption = None,
    use_package_list: UsePackageListOption = False,
    output: OutputOption = None,
    limit: LimitOption = None,
    retries: Annotated[
        int,
        typer.Option("--retries", min=0, help="Retries per package on transient errors"),
    ] = 3,
    chunk: Annotated[
        Optional[int],
        typer.Option(
            "--chunk", min=0, help="Index of the chunk to process (0..number-of-chunks-1)"
        ),
    ] = None,
    number_of_chunks: Annotated[
        Optional[int],
        typer.Option(
            "--number-of-chunks", min=1, help="Number of chunks to split the list into"
        ),
    ] = None,
    concurrency: ConcurrencyOption = 1,
    forge_host: Annotated[
        str,
        typer.Option("--forge-host", help="Only follow dependencies hosted here"),
    ] = "github.com",
    keep_forks: Annotated[
        bool,
        typer.Option("--keep-forks", help="Do not drop dependencies that are forks"),
    ] = False,
    keep_no_products: Annotated[
        bool,
        typer.Option(
            "--keep-no-products", help="Do not drop dependencies without products"
        ),
    ] = False,
    dump_command: Annotated[
        Optional[str],
        typer.Option("--dump-command", help="Command that dumps a manifest as JSON"),
    ] = None,
    use_cache: UseCacheOption = True,
    cache_path: CachePathOption = None,
    github_token: TokenOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Expand the package list with the dependencies of its packages."""
    _setup_logging(verbose)
    try:
        packages = _load_input(input_file, urls, use_package_list)
    except InputError as e:
        raise _fail(e)
    if (chunk is None) != (number_of_chunks is None):
        raise _fail("--chunk and --number-of-chunks must be given together")
    if chunk is not None and chunk >= number_of_chunks:
        raise _fail(f"--chunk must be below --number-of-chunks ({number_of_chunks})")

    config = ValidatorConfig.from_env(
        github_token=github_token,
        concurrency=concurrency,
        retries=retries,
        forge_host=forge_host.lower(),
        drop_forks=not keep_forks,
        drop_no_products=not keep_no_products,
        cache_path=cache_path,
        dump_command=dump_command,
    )
    config.warn_if_anonymous()

    try:
        if packages is None:
            packages = asyncio.run(_fetch_package_list(config))
    except Exception as e:
        raise _fail(e)
    if chunk is not None:
        console.print(f"Chunk {chunk} of {number_of_chunks}")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=err_console,
        transient=True,
    ) as progress:
        progress.add_task(
            f"Checking dependencies ({limit or len(packages)} packages)...", total=None
        )
        try:
            expanded = asyncio.run(
                _run_check_dependencies(
                    packages,
                    config,
                    limit,
                    use_cache,
                    chunk_index=chunk,
                    number_of_chunks=number_of_chunks,
                )
            )
        except Exception as e:
            raise _fail(e)

    added = len(expanded) - len(packages)
    console.print(f"Found [bold]{added}[/bold] new packages, {len(expanded)} total")
    _emit(expanded, output)


@app.command("check-index")
def check_index_command(
    api_token: Annotated[
        str,
        typer.Option("--api-token", envvar="SPI_API_TOKEN", help="Package index API token"),
    ],
    urls: UrlsArgument = None,
    input_file: InputOption = None,
    output: OutputOption = None,
    limit: LimitOption = None,
    api_base_url: Annotated[
        str,
        typer.Option("--api-base-url", help="Package index base URL"),
    ] = DEFAULT_INDEX_URL,
    keep_forks: Annotated[
        bool,
        typer.Option("--keep-forks", help="Do not drop dependencies that are forks"),
    ] = False,
    use_cache: UseCacheOption = True,
    cache_path: CachePathOption = None,
    github_token: TokenOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Find dependencies the package index references but has not indexed."""
    _setup_logging(verbose)
    try:
        packages = _load_input(input_file, urls)
    except InputError as e:
        raise _fail(e)

    config = ValidatorConfig.from_env(
        github_token=github_token, drop_forks=not keep_forks, cache_path=cache_path
    )
    config.warn_if_anonymous()

    try:
        result = asyncio.run(
            _run_check_index(packages, config, api_base_url, api_token, limit, use_cache)
        )
    except Exception as e:
        raise _fail(e)

    console.print(f"New packages: [bold]{len(result.added)}[/bold]")
    for url in result.added:
        console.print(f"  [green]ADD[/green] {url}")
    console.print(f"Not added because they are forks: {result.skipped_forks}")
    console.print(f"Total: {len(result.merged)}")
    if output is not None:
        _emit(result.merged, output)


@app.command("merge-lists")
def merge_lists_command(
    files: Annotated[
        list[Path],
        typer.Argument(help="Package list files to merge", exists=True, readable=True),
    ],
    output: OutputOption = None,
) -> None:
    """Merge package lists, ignoring case differences."""
    try:
        lists = [load_url_strings(path) for path in files]
    except InputError as e:
        raise _fail(e)

    merged = merge_lists(*lists)
    _emit([PackageURL(url) for url in merged], output)


@app.command("apply-deny-list")
def apply_deny_list_command(
    input_file: Annotated[
        Path,
        typer.Option("--input", "-i", help="Package list file"),
    ],
    deny_list: Annotated[
        Path,
        typer.Option("--deny-list", "-d", help="Deny list file"),
    ],
    output: OutputOption = None,
) -> None:
    """Remove denied packages from a package list."""
    try:
        packages = load_package_list(input_file)
        denied = load_deny_list(deny_list)
    except InputError as e:
        raise _fail(e)

    kept = apply_deny_list(packages, denied)
    console.print(f"Removed [bold]{len(packages) - len(kept)}[/bold] packages")
    _emit(kept, output)


@app.command("rate-limit")
def rate_limit_command(
    github_token: TokenOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Show the remaining GitHub API quota."""
    _setup_logging(verbose)
    config = ValidatorConfig.from_env(github_token=github_token)
    config.warn_if_anonymous()

    async def fetch():
        async with GitHubClient.from_config(config) as github:
            return await github.get_rate_limit()

    try:
        rate = asyncio.run(fetch())
    except Exception as e:
        raise _fail(e)

    console.print(f"[bold]Limit:[/bold] {rate.limit}")
    console.print(f"[bold]Used:[/bold] {rate.used}")
    console.print(f"[bold]Remaining:[/bold] {rate.remaining}")
    console.print(f"[bold]Resets at:[/bold] {rate.reset_at.isoformat()}")


@app.command()
def cache(
    action: Annotated[
        str,
        typer.Argument(help="Cache action: 'show' or 'clear'"),
    ],
    namespace: Annotated[
        Optional[str],
        typer.Argument(help="Cache to clear: 'repository' or 'manifest' (optional)"),
    ] = None,
    cache_path: CachePathOption = None,
) -> None:
    """Manage the persisted API cache.

    Actions:
        show  - Display cache location, entry count, and size
        clear - Clear all cached entries (or one cache)
    """
    store = CacheStore(cache_path)

    if action == "show":
        info = store.info()
        console.print(f"[bold]Cache Location:[/bold] {info['path']}")
        console.print(f"[bold]Entries:[/bold] {info['count']}")
        for name, count in sorted(info["namespaces"].items()):
            console.print(f"  {name}: {count}")
        console.print(f"[bold]Size:[/bold] {info['size_bytes'] / 1024:.1f} KB")

    elif action == "clear":
        store.clear(namespace=namespace)
        if namespace:
            console.print(f"[green]Cleared cache:[/green] {namespace}")
        else:
            console.print("[green]Cache cleared[/green]")

    else:
        err_console.print(f"[red]Unknown action:[/red] {action}")
        err_console.print("Valid actions: show, clear")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from grocery_crawler.config.errors import ConfigLoaderError
from grocery_crawler.crawler.errors import FatalInitError, InvalidInputError
from grocery_crawler.crawler.service import CrawlService
from grocery_crawler.logger import configure_logging, get_logger
from grocery_crawler.workflow.runner import CrawlRunner, RunnerOptions

console = Console()
cli = typer.Typer(help="Краулер продуктовых сайтов: категории, товары, штрихкоды и OCR.")
logger = get_logger(__name__)


def _common_options() -> dict:
    return dict(
        config_path=typer.Option(
            None,
            "--config",
            "-c",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
            envvar="CRAWLER_CONFIG_PATH",
            help="Путь к конфигурации (YAML/JSON). "
            "Если не указан, используется конфигурация из переменных окружения.",
        ),
        log_level=typer.Option(
            "INFO",
            "--log-level",
            envvar="LOG_LEVEL",
            help="Уровень логирования (DEBUG/INFO/WARNING/ERROR/CRITICAL).",
        ),
    )


def _build_overrides(*, no_ocr: bool, no_barcode: bool, headed: bool) -> dict[str, dict]:
    overrides: dict[str, dict] = {}
    if no_ocr:
        overrides.setdefault("recognition", {})["enable_ocr"] = False
    if no_barcode:
        overrides.setdefault("recognition", {})["enable_barcode"] = False
    if headed:
        overrides.setdefault("network", {})["browser_headless"] = False
    return overrides


def _wait_for_job(service: CrawlService, job_id: str) -> dict[str, int] | None:
    try:
        return service.wait(job_id)
    except KeyboardInterrupt:
        console.print("[yellow]Остановка запрошена, дожидаемся текущего товара...[/yellow]")
        service.stop_crawl(job_id)
        return service.wait(job_id)


@cli.command("crawl")
def crawl(
    url: str = typer.Argument(..., help="URL главной страницы магазина."),
    config_path: Optional[Path] = _common_options()["config_path"],
    log_level: str = _common_options()["log_level"],
    job_id: Optional[str] = typer.Option(
        None,
        "--job-id",
        help="Идентификатор задачи (по умолчанию генерируется UUID4).",
    ),
    no_ocr: bool = typer.Option(False, "--no-ocr", help="Отключить OCR изображений."),
    no_barcode: bool = typer.Option(False, "--no-barcode", help="Отключить поиск штрихкодов."),
    headed: bool = typer.Option(False, "--headed", help="Показывать окно браузера."),
) -> None:
    """Обходит сайт до конца; Ctrl+C запрашивает кооперативную остановку."""
    configure_logging(log_level.upper())  # type: ignore[arg-type]
    runner = CrawlRunner(
        RunnerOptions(
            config_path=config_path,
            overrides=_build_overrides(no_ocr=no_ocr, no_barcode=no_barcode, headed=headed),
        )
    )
    try:
        service = runner.build_service()
    except ConfigLoaderError as exc:
        raise typer.Exit(code=2) from exc
    try:
        try:
            started_id = service.start_crawl(url, job_id)
        except InvalidInputError as exc:
            console.print(f"[bold red]Некорректный URL:[/bold red] {exc}")
            raise typer.Exit(code=2) from exc
        console.print(f"[cyan]Задача запущена[/cyan]: {started_id}")
        try:
            stats = _wait_for_job(service, started_id)
        except FatalInitError as exc:
            console.print(f"[bold red]Задача завершилась ошибкой:[/bold red] {exc}")
            raise typer.Exit(code=1) from exc
    finally:
        service.shutdown()
        runner.close()
    _print_stats(stats or {})
    console.print("[bold green]Обход завершён[/bold green]")


@cli.command("jobs")
def list_jobs(
    config_path: Optional[Path] = _common_options()["config_path"],
    log_level: str = _common_options()["log_level"],
) -> None:
    """Список сохранённых задач обхода."""
    configure_logging(log_level.upper())  # type: ignore[arg-type]
    runner = CrawlRunner(RunnerOptions(config_path=config_path))
    db = runner.open_database()
    try:
        jobs = db.list_jobs()
    finally:
        runner.close()
    table = Table(title="Задачи обхода")
    for column in ("job_id", "url", "status", "started", "finished", "products", "errors"):
        table.add_column(column)
    for job in jobs:
        table.add_row(
            job.job_id,
            job.homepage_url,
            job.status.value,
            job.started_at or "-",
            job.finished_at or "-",
            str(job.processed_products),
            str(job.errors),
        )
    console.print(table)


@cli.command("job")
def show_job(
    job_id: str = typer.Argument(..., help="Идентификатор задачи."),
    config_path: Optional[Path] = _common_options()["config_path"],
    log_level: str = _common_options()["log_level"],
    last_errors: int = typer.Option(10, "--errors", min=0, help="Сколько последних ошибок показать."),
) -> None:
    """Состояние одной задачи и её последние ошибки."""
    configure_logging(log_level.upper())  # type: ignore[arg-type]
    runner = CrawlRunner(RunnerOptions(config_path=config_path))
    db = runner.open_database()
    try:
        job = db.get_job(job_id)
    finally:
        runner.close()
    if job is None:
        console.print(f"[bold red]Задача не найдена:[/bold red] {job_id}")
        raise typer.Exit(code=1)
    console.print(f"[bold]{job.job_id}[/bold] {job.homepage_url} [cyan]{job.status.value}[/cyan]")
    console.print(
        f"категорий {job.processed_categories}/{job.total_categories}, "
        f"товаров {job.processed_products}, ошибок {job.errors}"
    )
    shown = job.error_log[-last_errors:] if last_errors else []
    for entry in shown:
        console.print(f"[red]{entry.timestamp}[/red] {entry.error}")


def _print_stats(stats: dict[str, int]) -> None:
    table = Table(title="Итоги обхода")
    table.add_column("метрика")
    table.add_column("значение", justify="right")
    for key in ("categories", "products", "images", "barcodes", "errors"):
        table.add_row(key, str(stats.get(key, 0)))
    console.print(table)


def entrypoint() -> None:
    """CLI entrypoint для Docker."""
    cli()

"""CLI commands for the exam trainer.

Commands:
- practice: vocabulary spelling + grammar fill-in practice
- test: full mock test paper with listening audio and grading
- lookup: explain a word or phrase
- serve: run the Web API
- config: show the effective configuration
"""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from exam_trainer.config.app_config import config_path, load_app_config
from exam_trainer.core.audio import DecodedAudio, PlaybackGuard, PlaybackInProgressError, to_wav_bytes
from exam_trainer.core.gateway import GenerationFailedError, GenerationGateway, create_gateway
from exam_trainer.core.models import Grade, Publisher, Question, Term, TestPaper, TestResult, TextbookSelection
from exam_trainer.core.practice import render_passage
from exam_trainer.core.session import SessionError, TrainerSession

app = typer.Typer(
    name="exam-trainer",
    help="Self-study English exam trainer with AI-generated practice and mock tests.",
    no_args_is_help=True,
)

console = Console()

PUBLISHERS = {"pep": Publisher.PEP, "fltrp": Publisher.FLTRP, "yilin": Publisher.YILIN}
GRADES = {"7": Grade.SEVEN, "8": Grade.EIGHT, "9": Grade.NINE}
TERMS = {"1": Term.ONE, "2": Term.TWO}
OPTION_LETTERS = "ABCDEFGH"


def _selection_or_exit(publisher: str, grade: str, term: str) -> TextbookSelection:
    """Build a textbook selection from CLI shorthands, or exit."""
    try:
        return TextbookSelection(
            publisher=PUBLISHERS[publisher.lower()],
            grade=GRADES[grade],
            term=TERMS[term],
        )
    except KeyError as e:
        console.print(f"[red]✗ Unknown textbook option: {e}[/red]")
        console.print(f"  publishers: {', '.join(PUBLISHERS)} | grades: {', '.join(GRADES)} | terms: {', '.join(TERMS)}")
        raise typer.Exit(code=1)


def _parse_units_or_exit(units: str) -> list[int]:
    try:
        return [int(u) for u in units.split(",") if u.strip()]
    except ValueError:
        console.print(f"[red]✗ Units must be comma-separated numbers: {units}[/red]")
        raise typer.Exit(code=1)


def _new_session(selection: TextbookSelection) -> tuple[TrainerSession, GenerationGateway]:
    gateway = create_gateway()
    session = TrainerSession(gateway)
    session.configure(selection)
    return session, gateway


# =============================================================================
# PRACTICE
# =============================================================================


async def _run_practice(selection: TextbookSelection, units: list[int]) -> None:
    session, gateway = _new_session(selection)
    try:
        console.print(f"[blue]Generating vocabulary and grammar for units {', '.join(map(str, units))}...[/blue]")
        practice = await session.start_practice(units)

        console.print(f"\n[bold cyan]Vocabulary ({len(practice.vocab)} words)[/bold cyan]")
        vocab_inputs: dict[str, str] = {}
        for num, item in enumerate(practice.vocab, 1):
            vocab_inputs[item.id] = Prompt.ask(f"[{num}] {item.chinese} ({item.part_of_speech})", default="")

        vocab_results = session.check_vocabulary(vocab_inputs)
        for item in practice.vocab:
            if vocab_results[item.id]:
                console.print(f"  [green]✓ {item.english}[/green]")
            else:
                console.print(f"  [red]✗ {item.english}[/red] [dim]{item.example}[/dim]")
        console.print(f"Vocabulary: {sum(vocab_results.values())}/{len(vocab_results)}")

        grammar = practice.grammar
        report = session.context.passage_report
        if report is not None and not report.is_consistent:
            console.print("[yellow]⚠ Some blanks in this passage could not be matched to the text[/yellow]")

        story = []
        for segment in render_passage(grammar):
            if segment.kind == "text":
                story.append(segment.text)
            elif segment.kind == "blank":
                story.append(f"[bold]({segment.placeholder_id}) ____[/bold]")
            else:
                story.append(f"[red]{segment.text}[/red]")
        console.print(Panel("".join(story), title=grammar.title))

        grammar_inputs = {
            blank.id: Prompt.ask(f"Blank ({blank.id})", default="") for blank in grammar.blanks
        }
        grammar_results = session.check_grammar(grammar_inputs)
        for blank in grammar.blanks:
            mark = "[green]✓[/green]" if grammar_results[blank.id] else "[red]✗[/red]"
            console.print(f"  {mark} ({blank.id}) {blank.answer} [dim]{blank.explanation}[/dim]")
        console.print(f"Grammar: {sum(grammar_results.values())}/{len(grammar_results)}")
    finally:
        await gateway.aclose()


@app.command()
def practice(
    units: str = typer.Option(..., "--units", "-u", help="Units, e.g. 1,2,3"),
    publisher: str = typer.Option("pep", "--publisher", "-p", help="pep, fltrp, yilin"),
    grade: str = typer.Option("7", "--grade", "-g", help="7, 8, 9"),
    term: str = typer.Option("1", "--term", "-t", help="1, 2"),
) -> None:
    """Practice vocabulary spelling and a grammar fill-in passage.

    Example:
        exam-trainer practice --units 1,2 --publisher pep --grade 8 --term 2
    """
    selection = _selection_or_exit(publisher, grade, term)
    unit_list = _parse_units_or_exit(units)

    try:
        asyncio.run(_run_practice(selection, unit_list))
    except GenerationFailedError as e:
        console.print(f"[red]✗ Failed to generate content: {e}[/red]")
        console.print("  Check your connection and API key.")
        raise typer.Exit(code=1)
    except SessionError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)


# =============================================================================
# TEST
# =============================================================================


def _play_listening(guard: PlaybackGuard, audio: DecodedAudio, audio_out: Path | None) -> Path:
    """Write the listening audio as WAV and open it with the system player."""
    path = audio_out or Path(tempfile.gettempdir()) / "exam-trainer-listening.wav"

    def sink(decoded: DecodedAudio) -> None:
        path.write_bytes(to_wav_bytes(decoded))
        typer.launch(str(path))

    guard.play(audio, sink)
    return path


def _ask_question(num: int, question: Question) -> str:
    console.print(f"\n[bold]{num}. {question.prompt}[/bold] [dim]({question.max_score} pts)[/dim]")

    if question.kind == "multiple_choice":
        letters = OPTION_LETTERS[: len(question.options)]
        for letter, option in zip(letters, question.options):
            console.print(f"   {letter}. {option}")
        choice = Prompt.ask("Answer", choices=[*letters, *letters.lower(), ""], default="", show_choices=False)
        return question.options[letters.index(choice.upper())] if choice else ""

    if question.kind == "boolean":
        return Prompt.ask("True or False", choices=["True", "False", ""], default="", show_choices=False)

    if question.kind == "writing":
        return Prompt.ask("Your writing (one paragraph)", default="")

    return Prompt.ask("Answer", default="")


def _print_result(paper: TestPaper, result: TestResult) -> None:
    table = Table(title=paper.title)
    table.add_column("Section")
    table.add_column("Score", justify="right")
    table.add_column("Max", justify="right")
    for section in paper.sections:
        table.add_row(
            section.title,
            str(result.section_scores.get(section.id, 0)),
            str(sum(q.max_score for q in section.questions)),
        )
    table.add_row("[bold]Total[/bold]", f"[bold]{result.total_score}[/bold]", str(result.max_total_score))
    console.print(table)
    console.print(f"Score: {result.percentage:.0%}")

    explanations = {q.id: q.explanation for _, q in paper.iter_questions()}
    for grade in result.question_grades:
        if grade.is_correct is False:
            console.print(
                f"  [red]✗ {grade.question_id}[/red] expected [bold]{grade.expected_answer}[/bold]"
                f", got {grade.given_answer or '(no answer)'} [dim]{explanations.get(grade.question_id, '')}[/dim]"
            )

    for question_id, feedback in result.writing_feedback.items():
        console.print(Panel(
            f"{feedback.feedback}\n\n[bold]Improved version:[/bold]\n{feedback.improved_version}",
            title=f"Writing {question_id}: {feedback.score}/10",
        ))
    for failure in result.grading_errors:
        console.print(f"  [yellow]⚠ Writing {failure.question_id} could not be graded[/yellow]")


async def _run_test(
    selection: TextbookSelection,
    units: list[int],
    is_zhongkao: bool,
    audio_out: Path | None,
) -> TestResult:
    session, gateway = _new_session(selection)
    guard = PlaybackGuard()
    try:
        level = "Zhongkao-level simulation" if is_zhongkao else "comprehensive test"
        console.print(f"[blue]Generating {level} (listening, vocabulary, 3 readings + writing)...[/blue]")
        paper = await session.start_test(units, is_zhongkao)

        console.print(f"\n[bold cyan]{paper.title}[/bold cyan]")
        if paper.listening_audio is not None:
            if Confirm.ask("Play listening audio?", default=True):
                try:
                    path = _play_listening(guard, paper.listening_audio, audio_out)
                    console.print(f"  [dim]audio:[/dim] {path}")
                except PlaybackInProgressError as e:
                    console.print(f"[yellow]⚠ {e}[/yellow]")
        elif paper.listening_script:
            console.print("[yellow]⚠ Listening audio unavailable; the test continues without it.[/yellow]")

        num = 0
        for section in paper.sections:
            console.print(f"\n[bold magenta]{section.title}[/bold magenta]")
            if section.reading_passage:
                console.print(Panel(section.reading_passage))
            for question in section.questions:
                num += 1
                session.record_answer(question.id, _ask_question(num, question))

        console.print("[blue]Grading...[/blue]")
        result = await session.submit_test()
        _print_result(paper, result)
        return result
    finally:
        await gateway.aclose()


@app.command()
def test(
    units: str = typer.Option(..., "--units", "-u", help="Units, e.g. 1,2,3"),
    publisher: str = typer.Option("pep", "--publisher", "-p", help="pep, fltrp, yilin"),
    grade: str = typer.Option("7", "--grade", "-g", help="7, 8, 9"),
    term: str = typer.Option("1", "--term", "-t", help="1, 2"),
    zhongkao: bool = typer.Option(False, "--zhongkao", "-z", help="Zhongkao sprint difficulty"),
    audio_out: Path | None = typer.Option(None, "--audio-out", help="Where to write the listening WAV"),
) -> None:
    """Take a full mock test paper and get it graded.

    Example:
        exam-trainer test --units 3,4 --grade 9 --zhongkao
    """
    selection = _selection_or_exit(publisher, grade, term)
    unit_list = _parse_units_or_exit(units)

    try:
        asyncio.run(_run_test(selection, unit_list, zhongkao, audio_out))
    except GenerationFailedError as e:
        console.print(f"[red]✗ Failed to generate test paper: {e}[/red]")
        console.print("  Check your API key.")
        raise typer.Exit(code=1)
    except SessionError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)


# =============================================================================
# LOOKUP / SERVE / CONFIG
# =============================================================================


async def _run_lookup(word: str):
    gateway = create_gateway()
    try:
        return await gateway.lookup_word(word)
    finally:
        await gateway.aclose()


@app.command()
def lookup(word: str = typer.Argument(..., help="Word or phrase")) -> None:
    """Explain a word or phrase."""
    try:
        definition = asyncio.run(_run_lookup(word))
    except GenerationFailedError as e:
        console.print(f"[red]✗ Lookup failed: {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[bold]{definition.word}[/bold] [dim]{definition.phonetic}[/dim]")
    console.print(f"  {definition.chinese}")
    console.print(f"  {definition.english_definition}")
    console.print(f"  [italic]{definition.example}[/italic]")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Port"),
) -> None:
    """Run the Web API (generation endpoint + trainer sessions)."""
    import uvicorn

    uvicorn.run("exam_trainer.web.api:app", host=host, port=port)


@app.command(name="config")
def show_config() -> None:
    """Show the effective configuration."""
    config = load_app_config()
    console.print(f"[dim]file:[/dim]      {config_path()}")
    console.print(f"[dim]provider:[/dim]  {config.llm.provider}")
    provider = config.providers.get(config.llm.provider)
    if provider is not None:
        console.print(f"[dim]model:[/dim]     {config.llm.model or provider.default_model}")
        console.print(f"[dim]base_url:[/dim]  {provider.base_url}")
    console.print(f"[dim]gateway:[/dim]   {config.gateway.mode} ({config.gateway.url})")
    console.print(f"[dim]speech:[/dim]    {config.speech.model} {config.speech.primary_voice}/{config.speech.secondary_voice}")

import io
import json
import logging
import zipfile
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Annotated

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import HTMLResponse, StreamingResponse
from fastapi.templating import Jinja2Templates

from . import config
from .config import LOGGER
from .db import CollectionStore, get_store, init_store
from .definitions import (
    clear_all_data,
    delete_habit,
    delete_medication,
    delete_task,
    get_definition,
    list_habits,
    list_medications,
    list_tasks,
    load_all_definitions,
    purge_orphan_instances,
    save_habit,
    save_medication,
    save_task,
)
from .display import WindowView, active_window, build_view
from .exceptions import NotFoundError, PersistenceError, ValidationError
from .materializer import materialize
from .models import (
    Frequency,
    Habit,
    HabitBase,
    InstanceRecord,
    ItemKind,
    Medication,
    MedicationBase,
    Task,
    TaskBase,
)
from .progress import HISTORY_PAGE_SIZE, habit_calendar, habit_summary, history, medication_summary
from .state import Action, apply_action

app = FastAPI(title="meSync")
templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

COLLECTION_MODELS = {
    config.TASKS: Task,
    config.HABITS: Habit,
    config.HABIT_INSTANCES: InstanceRecord,
    config.MEDICATIONS: Medication,
    config.MEDICATION_INSTANCES: InstanceRecord,
}


def get_now() -> datetime:
    return datetime.now()


@contextmanager
def http_errors():
    """Translate core errors into HTTP responses."""
    try:
        yield
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail={"field": exc.field, "message": exc.message}) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@app.on_event("startup")
def on_startup() -> None:
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    store = init_store()
    purge_orphan_instances(store)


def _window_view(store: CollectionStore, now: datetime) -> WindowView:
    window = active_window(now)
    items = materialize(load_all_definitions(store), window, store)
    return build_view(items, now, window)


def _view_payload(view: WindowView) -> dict:
    return {
        "window": [day.isoformat() for day in view.window],
        "active": [item.model_dump(mode="json") for item in view.active],
        "finished": [item.model_dump(mode="json") for item in view.finished],
    }


# ─────────────────────────── ITEMS ───────────────────────────────────────────

@app.get("/", response_class=HTMLResponse)
def index(
    request: Request,
    store: CollectionStore = Depends(get_store),
    now: datetime = Depends(get_now),
):
    view = _window_view(store, now)
    ctx = {"view": view, "now": now, "window_days": config.WINDOW_DAYS}
    return templates.TemplateResponse(request, "index.html", ctx)


@app.get("/items")
def get_items(
    store: CollectionStore = Depends(get_store),
    now: datetime = Depends(get_now),
):
    return _view_payload(_window_view(store, now))


@app.post("/items/{kind}/{definition_id}/{action}")
def act_on_item(
    request: Request,
    kind: ItemKind,
    definition_id: str,
    action: Action,
    day: Annotated[str | None, Form()] = None,
    sub_index: Annotated[int, Form()] = 1,
    store: CollectionStore = Depends(get_store),
    now: datetime = Depends(get_now),
):
    scheduled_day = None
    if day:
        try:
            scheduled_day = date.fromisoformat(day)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid date") from exc

    with http_errors():
        apply_action(store, kind, definition_id, action, scheduled_day, sub_index, now)

    view = _window_view(store, now)
    if request.headers.get("HX-Request"):
        return templates.TemplateResponse(request, "partials/items.html", {"view": view, "now": now})
    return _view_payload(view)


# ─────────────────────────── TASKS ───────────────────────────────────────────

@app.get("/tasks")
def get_tasks(
    task_filter: str = Query(default="all", alias="filter"),
    sort: str = Query(default="due_date"),
    q: str | None = Query(default=None),
    store: CollectionStore = Depends(get_store),
    now: datetime = Depends(get_now),
):
    with http_errors():
        return list_tasks(store, task_filter, sort, q, now)


@app.post("/tasks", status_code=201)
def create_task(
    payload: TaskBase,
    store: CollectionStore = Depends(get_store),
    now: datetime = Depends(get_now),
):
    with http_errors():
        return save_task(store, Task(**payload.model_dump(), created_at=now), now)


@app.put("/tasks/{task_id}")
def update_task(
    task_id: str,
    payload: TaskBase,
    store: CollectionStore = Depends(get_store),
    now: datetime = Depends(get_now),
):
    with http_errors():
        task = get_definition(store, ItemKind.TASK, task_id)
        return save_task(store, Task(**{**task.model_dump(), **payload.model_dump()}), now)


@app.delete("/tasks/{task_id}", status_code=204)
def remove_task(task_id: str, store: CollectionStore = Depends(get_store)):
    with http_errors():
        delete_task(store, task_id)


# ─────────────────────────── HABITS ──────────────────────────────────────────

@app.get("/habits")
def get_habits(
    frequency: Frequency | None = Query(default=None),
    q: str | None = Query(default=None),
    store: CollectionStore = Depends(get_store),
):
    return list_habits(store, frequency, q)


@app.get("/habits/summary")
def get_habit_summary(store: CollectionStore = Depends(get_store), now: datetime = Depends(get_now)):
    return habit_summary(store, now)


@app.get("/habits/calendar")
def get_habit_calendar(
    year: int | None = Query(default=None),
    month: int | None = Query(default=None),
    store: CollectionStore = Depends(get_store),
    now: datetime = Depends(get_now),
):
    with http_errors():
        return habit_calendar(
            store,
            now.year if year is None else year,
            now.month if month is None else month,
        )


@app.post("/habits", status_code=201)
def create_habit(
    payload: HabitBase,
    store: CollectionStore = Depends(get_store),
    now: datetime = Depends(get_now),
):
    if "anchor_date" not in payload.recurrence.model_fields_set:
        payload.recurrence = payload.recurrence.model_copy(update={"anchor_date": now})
    with http_errors():
        return save_habit(store, Habit(**payload.model_dump(), created_at=now), now)


@app.put("/habits/{habit_id}")
def update_habit(
    habit_id: str,
    payload: HabitBase,
    store: CollectionStore = Depends(get_store),
    now: datetime = Depends(get_now),
):
    with http_errors():
        habit = get_definition(store, ItemKind.HABIT, habit_id)
        updated = Habit(**{**habit.model_dump(), **payload.model_dump()})
        return save_habit(store, updated, now)


@app.delete("/habits/{habit_id}", status_code=204)
def remove_habit(habit_id: str, store: CollectionStore = Depends(get_store)):
    with http_errors():
        delete_habit(store, habit_id)


# ─────────────────────────── MEDICATIONS ─────────────────────────────────────

@app.get("/medications")
def get_medications(
    period: str = Query(default="all"),
    q: str | None = Query(default=None),
    store: CollectionStore = Depends(get_store),
):
    with http_errors():
        return list_medications(store, period, q)


@app.get("/medications/summary")
def get_medication_summary(store: CollectionStore = Depends(get_store), now: datetime = Depends(get_now)):
    return medication_summary(store, now)


@app.post("/medications", status_code=201)
def create_medication(
    payload: MedicationBase,
    store: CollectionStore = Depends(get_store),
    now: datetime = Depends(get_now),
):
    with http_errors():
        return save_medication(store, Medication(**payload.model_dump(), created_at=now), now)


@app.put("/medications/{medication_id}")
def update_medication(
    medication_id: str,
    payload: MedicationBase,
    store: CollectionStore = Depends(get_store),
    now: datetime = Depends(get_now),
):
    with http_errors():
        medication = get_definition(store, ItemKind.MEDICATION, medication_id)
        updated = Medication(**{**medication.model_dump(), **payload.model_dump()})
        return save_medication(store, updated, now)


@app.delete("/medications/{medication_id}", status_code=204)
def remove_medication(medication_id: str, store: CollectionStore = Depends(get_store)):
    with http_errors():
        delete_medication(store, medication_id)


# ─────────────────────────── HISTORY ─────────────────────────────────────────

@app.get("/history")
def get_history(
    kind: ItemKind | None = Query(default=None),
    q: str | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=HISTORY_PAGE_SIZE, ge=1, le=500),
    store: CollectionStore = Depends(get_store),
):
    """Completed and skipped items, most recent action first."""
    page = history(store, kind, q, offset, limit)
    return {"total": page.total, "items": [item.model_dump(mode="json") for item in page.items]}


# ─────────────────────────── EXPORT / IMPORT ─────────────────────────────────

@app.get("/export")
def export_data(store: CollectionStore = Depends(get_store), now: datetime = Depends(get_now)):
    """Export all collections to a ZIP of JSON files."""
    output = io.BytesIO()
    with zipfile.ZipFile(output, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, model in COLLECTION_MODELS.items():
            records = [item.model_dump(mode="json") for item in store.load_collection(name, model)]
            zf.writestr(f"{name}.json", json.dumps(records, indent=2, ensure_ascii=False))

    output.seek(0)
    filename = f"mesync_export_{now.date().isoformat()}.zip"
    return StreamingResponse(
        output,
        media_type="application/zip",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@app.post("/import")
async def import_data(
    file: UploadFile = File(...),
    store: CollectionStore = Depends(get_store),
):
    """Replace all collections with the contents of an export ZIP."""
    if not (file.filename or "").endswith(".zip"):
        raise HTTPException(status_code=400, detail="Please upload a .zip file")

    contents = await file.read()
    try:
        zf = zipfile.ZipFile(io.BytesIO(contents))
    except zipfile.BadZipFile as exc:
        raise HTTPException(status_code=400, detail="Invalid ZIP file") from exc

    # Validate everything before overwriting anything
    imported: dict[str, list] = {}
    with zf:
        for name, model in COLLECTION_MODELS.items():
            member = f"{name}.json"
            if member not in zf.namelist():
                imported[name] = []
                continue
            try:
                raw = json.loads(zf.read(member))
                imported[name] = [model.model_validate(record) for record in raw]
            except (TypeError, ValueError) as exc:
                raise HTTPException(status_code=400, detail=f"Invalid data in {member}") from exc

    with http_errors(), store.locked():
        for name, records in imported.items():
            store.save_collection(name, records)
        purge_orphan_instances(store)
    LOGGER.info("Imported %s", {name: len(records) for name, records in imported.items()})
    return {name: len(records) for name, records in imported.items()}


@app.post("/reset-data", status_code=204)
def reset_data(store: CollectionStore = Depends(get_store)):
    with http_errors():
        clear_all_data(store)

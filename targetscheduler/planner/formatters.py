import datetime

from targetscheduler.util.format import deg_to_dms, deg_to_hms, format_duration
from .instructions import (
    AfterTargetHook,
    BeforeTargetHook,
    Message,
    PlanInstruction,
    SchedulerPlan,
    SetReadoutMode,
    SwitchFilter,
    TakeExposure,
    TakeFlats,
)


def plan_to_dict(plan: SchedulerPlan | None) -> dict:
    if plan is None:
        return {"kind": "done"}
    if plan.is_wait:
        return {
            "kind": "wait",
            "plan_id": plan.plan_id,
            "wait_until": plan.wait_until.isoformat(),
            "is_emulator": plan.is_emulator,
        }
    target = plan.target
    return {
        "kind": "target",
        "plan_id": plan.plan_id,
        "is_emulator": plan.is_emulator,
        "target": {
            "id": target.id,
            "name": target.name,
            "project": target.project.name if target.project is not None else None,
            "ra_deg": target.ra_deg,
            "dec_deg": target.dec_deg,
            "rotation_deg": target.rotation_deg,
        },
        "time_interval": {
            "start": plan.time_interval.start.isoformat(),
            "end": plan.time_interval.end.isoformat(),
        },
        "instructions": [_instruction_to_dict(i) for i in plan.instructions],
    }


def _instruction_to_dict(instruction: PlanInstruction) -> dict:
    data: dict = {"kind": instruction.kind}
    if isinstance(instruction, (SetReadoutMode, SwitchFilter, TakeExposure)):
        exp = instruction.exposure_plan
        data["exposure_plan_id"] = exp.id
        data["filter"] = exp.filter_name
        if isinstance(instruction, TakeExposure):
            data["exposure_s"] = exp.exposure_length_s
        if isinstance(instruction, SetReadoutMode):
            data["readout_mode"] = exp.readout_mode
    elif isinstance(instruction, (BeforeTargetHook, AfterTargetHook)):
        data["target"] = instruction.target.name
    elif isinstance(instruction, Message):
        data["text"] = instruction.text
    elif isinstance(instruction, TakeFlats):
        data["sessions"] = [
            {
                "target_id": s.target_id,
                "session_date": s.session_date.isoformat(),
                "filter": s.flat_spec.filter_name,
            }
            for s in instruction.light_sessions
        ]
    return data


def format_text(plan: SchedulerPlan | None, verbose: bool = False) -> str:
    lines: list[str] = []
    local_tz = datetime.datetime.now().astimezone().tzinfo
    lines.append("Target Scheduler")
    lines.append("================")
    if plan is None:
        lines.append("Nothing left to image tonight.")
        return "\n".join(lines)
    if plan.is_wait:
        lines.append(f"Wait until {_format_time(plan.wait_until, local_tz)} (local)")
        return "\n".join(lines)

    target = plan.target
    interval = plan.time_interval
    project = target.project.name if target.project is not None else "-"
    lines.append(f"Target: {target.name} ({project})")
    lines.append(f"Coordinates: {deg_to_hms(target.ra_deg)} {deg_to_dms(target.dec_deg)}  rotation {target.rotation_deg:.1f}°")
    lines.append(
        f"Window (local): {_format_time(interval.start, local_tz)} → {_format_time(interval.end, local_tz)}"
        f"  ({format_duration(interval.duration)})"
    )
    lines.append("")
    for idx, (label, count) in enumerate(_collapse(plan.instructions, verbose), start=1):
        suffix = f" x{count}" if count > 1 else ""
        lines.append(f"{idx:>2}. {label}{suffix}")
    return "\n".join(lines)


def _collapse(instructions, verbose: bool) -> list[tuple[str, int]]:
    """Merge runs of identical exposures into one line unless verbose."""
    rows: list[tuple[str, int]] = []
    for instruction in instructions:
        label = _label(instruction)
        if not verbose and rows and isinstance(instruction, TakeExposure) and rows[-1][0] == label:
            rows[-1] = (label, rows[-1][1] + 1)
            continue
        rows.append((label, 1))
    return rows


def _label(instruction: PlanInstruction) -> str:
    if isinstance(instruction, TakeExposure):
        exp = instruction.exposure_plan
        return f"exposure {exp.filter_name} {exp.exposure_length_s:g}s"
    if isinstance(instruction, SwitchFilter):
        return f"filter {instruction.exposure_plan.filter_name}"
    if isinstance(instruction, SetReadoutMode):
        mode = instruction.exposure_plan.readout_mode
        return f"readout mode {mode if mode is not None else 'default'}"
    if isinstance(instruction, (BeforeTargetHook, AfterTargetHook)):
        return f"{instruction.kind.replace('_', ' ')} {instruction.target.name}"
    if isinstance(instruction, Message):
        return f"message: {instruction.text}"
    if isinstance(instruction, TakeFlats):
        return f"flats for {len(instruction.light_sessions)} light sessions"
    return instruction.kind


def _format_time(dt: datetime.datetime, tz: datetime.tzinfo | None) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    if tz is None:
        tz = datetime.timezone.utc
    return dt.astimezone(tz).strftime("%Y-%m-%d %H:%M")

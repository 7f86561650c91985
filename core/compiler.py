"""
ClipCraft — Export Compiler
Turns a MaterializedState into an ordered, engine-agnostic InstructionList,
then renders that list to an FFmpeg argument vector.

Instruction order is fixed:
    trim -> crop -> scale -> color -> speed -> text -> transition -> volume -> audio mix

Categories with nothing to do are omitted entirely. Color math reuses the
kernel's CSS matrices (effects.color) and per-pixel formulas, so the exported
grade matches the live preview.
"""

from __future__ import annotations

import logging
import math
import os
import re
from enum import Enum
from typing import Any, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from core.bundle import FilterBundle
from core.edits import AudioTrack, TextOverlay, Transition, Trim
from core.errors import InvalidInputError
from core.export_models import EncodeSettings, MediaInfo, resolve_dimensions
from core.ledger import MaterializedState, split_segments
from effects.color import CompositeStep, composite_steps
from effects.grading import HIGHLIGHT_ZONE_MIN, LUM_B, LUM_G, LUM_R, SHADOW_ZONE_MAX, ZONE_WEIGHTS
from effects.texture import GRAIN_RANGE

logger = logging.getLogger(__name__)

OVERLAY_FADE_SEC = 0.5
TYPEWRITER_MAX_STEPS = 80
TYPEWRITER_CHAR_SEC = 0.1


class InstructionKind(str, Enum):
    TRIM = "trim"
    CROP = "crop"
    SCALE = "scale"
    COLOR = "color"
    SPEED = "speed"
    TEXT = "text"
    TRANSITION = "transition"
    VOLUME = "volume"
    AUDIO_MIX = "audio_mix"


class Instruction(BaseModel):
    """One primitive operation for the render engine.

    `stream` says where `expr` goes: "input" (seek options), "video" or
    "audio" (filter chains on the main input) or "track" (one extra audio
    input, mixed in by `amix`).
    """

    model_config = ConfigDict(frozen=True)

    kind: InstructionKind
    stream: str
    expr: str = ""
    params: dict[str, Any] = Field(default_factory=dict)


class InstructionList(BaseModel):
    """Ordered instructions plus the facts needed to render them."""

    instructions: list[Instruction] = Field(default_factory=list)
    source: MediaInfo
    output_duration: float
    has_source_audio: bool = False

    def __len__(self) -> int:
        return len(self.instructions)

    def of_kind(self, kind: InstructionKind) -> list[Instruction]:
        return [i for i in self.instructions if i.kind == kind]

    def categories(self) -> list[str]:
        """Distinct instruction kinds, in order of first appearance."""
        seen: list[str] = []
        for ins in self.instructions:
            if ins.kind.value not in seen:
                seen.append(ins.kind.value)
        return seen

    @property
    def color(self) -> Optional[Instruction]:
        found = self.of_kind(InstructionKind.COLOR)
        return found[0] if found else None

    @property
    def track_count(self) -> int:
        return len(self.of_kind(InstructionKind.AUDIO_MIX))

    def video_filters(self) -> list[str]:
        return [i.expr for i in self.instructions if i.stream == "video"]

    def audio_filters(self) -> list[str]:
        return [i.expr for i in self.instructions if i.stream == "audio"]

    def to_ffmpeg_args(
        self,
        input_name: str,
        output_name: str,
        audio_names: Sequence[str] = (),
        encode: EncodeSettings | None = None,
    ) -> list[str]:
        """Render the full FFmpeg argument list (without the binary).

        Args:
            input_name: Staged name of the main clip.
            output_name: Name the engine should write.
            audio_names: Staged names of the extra audio tracks, in track order.
            encode: Encoder flags (defaults to EncodeSettings()).
        """
        encode = encode or EncodeSettings()
        tracks = self.of_kind(InstructionKind.AUDIO_MIX)
        if len(audio_names) != len(tracks):
            raise InvalidInputError(
                f"{len(tracks)} audio track instruction(s) but {len(audio_names)} staged file(s)"
            )

        args: list[str] = []
        for ins in self.of_kind(InstructionKind.TRIM):
            args += ["-ss", _num(ins.params["start"]), "-t", _num(ins.params["duration"])]
        args += ["-i", input_name]
        for name in audio_names:
            args += ["-i", name]

        graph: list[str] = []
        video = self.video_filters()
        if video:
            graph.append(f"[0:v]{','.join(video)}[vout]")

        audio_out = None
        source_audio = self.audio_filters() if self.has_source_audio else []
        if tracks:
            labels = []
            if self.has_source_audio:
                graph.append(f"[0:a]{','.join(source_audio) or 'anull'}[a0]")
                labels.append("[a0]")
            for k, ins in enumerate(tracks):
                graph.append(f"[{k + 1}:a]{ins.expr}[t{k}]")
                labels.append(f"[t{k}]")
            mode = "first" if self.has_source_audio else "longest"
            graph.append(f"{''.join(labels)}amix=inputs={len(labels)}:duration={mode}:dropout_transition=0[aout]")
            audio_out = "[aout]"
        elif source_audio:
            graph.append(f"[0:a]{','.join(source_audio)}[aout]")
            audio_out = "[aout]"
        elif self.has_source_audio:
            audio_out = "0:a:0?"

        if graph:
            args += ["-filter_complex", ";".join(graph)]
        args += ["-map", "[vout]" if video else "0:v:0"]
        if audio_out:
            args += ["-map", audio_out]

        args += encode.video_args()
        if audio_out:
            args += encode.audio_args()
        else:
            args += ["-an"]
        if tracks and not self.has_source_audio:
            args += ["-t", _num(self.output_duration)]
        args += ["-y", output_name]
        return args


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def _num(value: float) -> str:
    """Compact fixed-point number for FFmpeg (no exponent, no trailing zeros)."""
    text = f"{round(float(value), 6):.6f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-", "-0") else text


def _signed(value: float) -> str:
    """Offset with an explicit sign (+1.5, -1.5) for appending to an expression."""
    text = _num(value)
    return text if text.startswith("-") else "+" + text


def _escape(value: str, chars: str) -> str:
    return "".join("\\" + c if c in chars else c for c in value)


def escape_filter_value(text: str) -> str:
    """Escape a free-text option value for use inside -filter_complex.

    Two levels: the filter option parser (\\ ' :) then the filtergraph
    parser (\\ ' [ ] , ;).
    """
    return _escape(_escape(text, "\\':"), "\\'[],;")


def _hex_color(color: str, opacity: float | None = None) -> str:
    value = "0x" + color.lstrip("#").lower()
    if opacity is not None:
        value += f"@{_num(opacity)}"
    return value


def lut_filename(name: str) -> str:
    """'Kodak 2383' -> 'kodak_2383.cube'."""
    slug = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")
    return f"{slug or 'lut'}.cube"


# ---------------------------------------------------------------------------
# Color
# ---------------------------------------------------------------------------

_LUM = f"({LUM_R}*r(X,Y)+{LUM_G}*g(X,Y)+{LUM_B}*b(X,Y))"


def _geq(template: str) -> str:
    """geq over R, G, B. `template` uses {c} for the channel function name."""
    parts = [f"{ch}='clip({template.format(c=ch)},0,255)'" for ch in ("r", "g", "b")]
    return "geq=" + ":".join(parts)


def _lutrgb(r: str = "val", g: str = "val", b: str = "val") -> str:
    parts = []
    for ch, expr in (("r", r), ("g", g), ("b", b)):
        if expr != "val":
            parts.append(f"{ch}='clip({expr},0,255)'")
    return "lutrgb=" + ":".join(parts)


def render_matrix(matrix) -> str:
    """Render a (3, 4) affine color matrix as FFmpeg filters.

    Pure scales/mixes become colorchannelmixer. Per-channel scale+offset
    (contrast) becomes lutrgb. Anything else is a mixer followed by an
    offset lut.
    """
    m3 = matrix[:, :3]
    offset = matrix[:, 3]
    is_diagonal = all(abs(m3[i][j]) < 1e-12 for i in range(3) for j in range(3) if i != j)
    if all(abs(o) < 1e-12 for o in offset):
        names = ("rr", "rg", "rb", "gr", "gg", "gb", "br", "bg", "bb")
        values = [m3[i][j] for i in range(3) for j in range(3)]
        return "colorchannelmixer=" + ":".join(f"{n}={_num(v)}" for n, v in zip(names, values))
    if is_diagonal:
        exprs = [f"val*{_num(m3[i][i])}{_signed(offset[i])}" for i in range(3)]
        return _lutrgb(*exprs)
    mixer = render_matrix(_without_offset(matrix))
    return mixer + "," + _lutrgb(*[f"val{_signed(o)}" for o in offset])


def _without_offset(matrix):
    out = matrix.copy()
    out[:, 3] = 0.0
    return out


def render_step(step: CompositeStep) -> str:
    if step.matrix is not None:
        return render_matrix(step.matrix)
    return f"gblur=sigma={_num(step.sigma)}"


def _custom_pass_filters(bundle: FilterBundle) -> list[tuple[str, str]]:
    """(pass name, filter) pairs for the per-pixel passes, in kernel order."""
    out: list[tuple[str, str]] = []
    if bundle.vintage:
        out.append(("vintage", _lutrgb("val*1.2+20", "val*1.1+10", "val*0.8")))
    if bundle.black_and_white:
        weights = (LUM_R, LUM_G, LUM_B)
        mix = ":".join(f"{out_ch}{in_ch}={w}" for out_ch in "rgb" for in_ch, w in zip("rgb", weights))
        out.append(("black_and_white", "colorchannelmixer=" + mix))
    if bundle.is_active("gamma"):
        expr = f"255*pow(val/255,{_num(1.0 / bundle.gamma)})"
        out.append(("gamma", _lutrgb(expr, expr, expr)))
    if bundle.is_active("exposure"):
        expr = f"val*{_num(2.0 ** bundle.exposure)}"
        out.append(("exposure", _lutrgb(expr, expr, expr)))
    if bundle.is_active("shadows"):
        k = _num(1.0 + bundle.shadows / 100.0)
        out.append(("shadows", _geq(f"if(lt({_LUM},128),{{c}}(X,Y)*{k},{{c}}(X,Y))")))
    if bundle.is_active("highlights"):
        k = _num(1.0 + bundle.highlights / 100.0)
        out.append(("highlights", _geq(f"if(gt({_LUM},128),{{c}}(X,Y)*{k},{{c}}(X,Y))")))
    if bundle.is_active("temperature"):
        shift = bundle.temperature / 10.0
        out.append(("temperature", _lutrgb(r=f"val{_signed(shift)}", b=f"val{_signed(-shift)}")))
    if bundle.is_active("tint"):
        out.append(("tint", _lutrgb(g=f"val{_signed(bundle.tint / 10.0)}")))
    if bundle.is_active("vibrance"):
        mx = "max(max(r(X,Y),g(X,Y)),b(X,Y))"
        avg = "((r(X,Y)+g(X,Y)+b(X,Y))/3)"
        amt = f"(({mx}-{avg})/255*{_num(bundle.vibrance / 100.0)})"
        out.append(("vibrance", _geq(f"if(lt({{c}}(X,Y),{mx}),{{c}}(X,Y)+({mx}-{{c}}(X,Y))*{amt},{{c}}(X,Y))")))
    if bundle.is_active("clarity"):
        # interior pixels only; the border row/column passes through
        k = _num(bundle.clarity / 100.0)
        interior = "gt(X,0)*gt(Y,0)*lt(X,W-1)*lt(Y,H-1)"
        neighbors = "({c}(X-1,Y)+{c}(X+1,Y)+{c}(X,Y-1)+{c}(X,Y+1))/4"
        sharpened = f"{{c}}(X,Y)+({{c}}(X,Y)-{neighbors})*{k}"
        out.append(("clarity", _geq(f"if({interior},{sharpened},{{c}}(X,Y))")))
    if bundle.is_active("grain"):
        strength = max(1, int(round(GRAIN_RANGE * bundle.grain / 100.0)))
        out.append(("grain", f"noise=alls={strength}:allf=u"))
    if bundle.is_active("vignette"):
        factor = (f"(1-hypot(X-trunc(W/2),Y-trunc(H/2))/max(hypot(trunc(W/2),trunc(H/2)),1)"
                  f"*{_num(bundle.vignette / 100.0)})")
        out.append(("vignette", _geq(f"{{c}}(X,Y)*{factor}")))
    zones = (bundle.shadow_tint, bundle.midtone_tint, bundle.highlight_tint)
    if any(z is not None for z in zones):
        out.append(("zone_grade", _zone_geq(zones)))
    return out


def _zone_geq(zones) -> str:
    parts = []
    for idx, ch in enumerate(("r", "g", "b")):
        s, m, h = (_num(z[idx] * w) if z is not None else "0" for z, w in zip(zones, ZONE_WEIGHTS))
        add = f"if(lt({_LUM},{SHADOW_ZONE_MAX}),{s},if(lte({_LUM},{HIGHLIGHT_ZONE_MIN}),{m},{h}))"
        parts.append(f"{ch}='clip({ch}(X,Y)+{add},0,255)'")
    return "geq=" + ":".join(parts)


def _lut_filters(bundle: FilterBundle, lut_dir: str | None) -> list[str]:
    path = lut_filename(bundle.lut)
    if lut_dir:
        path = os.path.join(lut_dir, path)
    lut3d = f"lut3d=file={escape_filter_value(path)}"
    intensity = bundle.get("lut_intensity") / 100.0
    if intensity >= 1.0:
        return [lut3d]
    if intensity <= 0.0:
        return []
    i = _num(intensity)
    return [
        f"split[cc_base][cc_lut];[cc_lut]{lut3d}[cc_graded];"
        f"[cc_base][cc_graded]blend=all_expr='A*(1-{i})+B*{i}'"
    ]


def compile_color(bundle: FilterBundle, lut_dir: str | None = None) -> Optional[Instruction]:
    """Single combined color instruction, or None for an identity bundle.

    `params["steps"]` holds the compositing matrices so the instruction can
    be evaluated without FFmpeg.
    """
    steps = composite_steps(bundle)
    passes = _custom_pass_filters(bundle)
    lut = _lut_filters(bundle, lut_dir) if bundle.lut else []
    if not steps and not passes and not lut:
        return None
    filters = ["format=gbrp"]
    filters += [render_step(s) for s in steps]
    filters += [f for _, f in passes]
    filters += lut
    return Instruction(
        kind=InstructionKind.COLOR,
        stream="video",
        expr=",".join(filters),
        params={
            "steps": steps,
            "passes": [name for name, _ in passes],
            "lut": bundle.lut,
            "lut_intensity": bundle.get("lut_intensity") if bundle.lut else None,
        },
    )


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

def crop_pixels(crop, width: int, height: int) -> tuple[int, int, int, int]:
    """Percent crop -> absolute (w, h, x, y) on a width x height source.

    Raises:
        InvalidInputError: If the rect rounds to zero pixels.
    """
    w = round(width * crop.width / 100.0)
    h = round(height * crop.height / 100.0)
    x = round(width * crop.x / 100.0)
    y = round(height * crop.y / 100.0)
    x = max(0, min(x, width - 1))
    y = max(0, min(y, height - 1))
    w = min(w, width - x)
    h = min(h, height - y)
    if w < 1 or h < 1:
        raise InvalidInputError(
            f"Crop {crop.width}% x {crop.height}% of {width}x{height} is empty"
        )
    return w, h, x, y


def compile_crop(crop, source: MediaInfo) -> Instruction:
    w, h, x, y = crop_pixels(crop, source.width, source.height)
    return Instruction(
        kind=InstructionKind.CROP, stream="video",
        expr=f"crop={w}:{h}:{x}:{y}",
        params={"width": w, "height": h, "x": x, "y": y},
    )


def compile_scale(width: int, height: int) -> Instruction:
    return Instruction(
        kind=InstructionKind.SCALE, stream="video",
        expr=(f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
              f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1"),
        params={"width": width, "height": height},
    )


# ---------------------------------------------------------------------------
# Speed & audio
# ---------------------------------------------------------------------------

def atempo_chain(speed: float) -> list[float]:
    """Split a tempo factor into atempo stages within [0.5, 2.0]."""
    stages = []
    remaining = float(speed)
    while remaining > 2.0:
        stages.append(2.0)
        remaining /= 2.0
    while remaining < 0.5:
        stages.append(0.5)
        remaining /= 0.5
    stages.append(remaining)
    return stages


def compile_speed(speed: float, has_audio: bool) -> list[Instruction]:
    out = [Instruction(
        kind=InstructionKind.SPEED, stream="video",
        expr=f"setpts=PTS/{_num(speed)}", params={"speed": speed},
    )]
    if has_audio:
        stages = atempo_chain(speed)
        out.append(Instruction(
            kind=InstructionKind.SPEED, stream="audio",
            expr=",".join(f"atempo={_num(s)}" for s in stages),
            params={"speed": speed, "stages": stages},
        ))
    return out


def compile_audio_track(track: AudioTrack, index: int, clip_duration: float) -> Instruction:
    """Delay, level and fade one extra audio input."""
    filters = []
    delay_ms = int(round(track.start * 1000))
    if delay_ms > 0:
        filters.append(f"adelay={delay_ms}|{delay_ms}")
    if track.volume != 1.0:
        filters.append(f"volume={_num(track.volume)}")
    if track.fade_in > 0:
        filters.append(f"afade=t=in:st={_num(track.start)}:d={_num(track.fade_in)}")
    if track.fade_out > 0:
        end = track.start + track.duration if track.duration else clip_duration
        end = min(end, clip_duration)
        fade_start = max(track.start, end - track.fade_out)
        filters.append(f"afade=t=out:st={_num(fade_start)}:d={_num(track.fade_out)}")
    if track.duration:
        filters.append(f"atrim=end={_num(track.start + track.duration)}")
    return Instruction(
        kind=InstructionKind.AUDIO_MIX, stream="track",
        expr=",".join(filters) or "anull",
        params={
            "index": index,
            "track_id": track.id,
            "start": track.start,
            "volume": track.volume,
            "fade_in": track.fade_in,
            "fade_out": track.fade_out,
        },
    )


# ---------------------------------------------------------------------------
# Text overlays
# ---------------------------------------------------------------------------

def _drawtext(overlay: TextOverlay, text: str, enable: str, x: str, y: str,
              alpha: str | None = None) -> str:
    opts = [
        f"text={escape_filter_value(text)}",
        "expansion=none",
        f"font={escape_filter_value(overlay.font_family)}",
        f"fontsize={overlay.font_size}",
        f"fontcolor={_hex_color(overlay.color)}",
        f"x='{x}'",
        f"y='{y}'",
    ]
    if overlay.background_opacity > 0:
        opts += ["box=1", f"boxcolor={_hex_color(overlay.background_color, overlay.background_opacity)}",
                 "boxborderw=8"]
    if alpha is not None:
        opts.append(f"alpha='{alpha}'")
    opts.append(f"enable='{enable}'")
    return "drawtext=" + ":".join(opts)


def compile_overlay(overlay: TextOverlay) -> Instruction:
    """drawtext windowed to [start, end], positioned by percent, animated."""
    s, e = overlay.start, overlay.end
    base_x = f"w*{_num(overlay.x / 100.0)}-text_w/2"
    base_y = f"h*{_num(overlay.y / 100.0)}-text_h/2"
    enable = f"between(t,{_num(s)},{_num(e)})"
    x, y, alpha = base_x, base_y, None
    fade = min(OVERLAY_FADE_SEC, (e - s) / 2.0) if e > s else 0.0

    if overlay.animation == "fade" and fade > 0:
        d = _num(fade)
        alpha = (f"if(lt(t,{_num(s)}+{d}),(t-{_num(s)})/{d},"
                 f"if(gt(t,{_num(e)}-{d}),({_num(e)}-t)/{d},1))")
    elif overlay.animation == "slide" and fade > 0:
        d = _num(fade)
        x = f"if(lt(t,{_num(s)}+{d}),-text_w+({base_x}+text_w)*(t-{_num(s)})/{d},{base_x})"
    elif overlay.animation == "bounce":
        y = f"{base_y}-abs(sin((t-{_num(s)})*PI*2))*h*0.03"

    if overlay.animation == "typewriter" and overlay.text:
        expr = _typewriter(overlay, x, y)
    else:
        expr = _drawtext(overlay, overlay.text, enable, x, y, alpha)
    return Instruction(
        kind=InstructionKind.TEXT, stream="video", expr=expr,
        params={"overlay_id": overlay.id, "start": s, "end": e, "animation": overlay.animation},
    )


def _typewriter(overlay: TextOverlay, x: str, y: str) -> str:
    """Staggered drawtext reveals, one per prefix, the last holding to `end`."""
    text = overlay.text
    steps = min(len(text), TYPEWRITER_MAX_STEPS)
    span = overlay.end - overlay.start
    dt = min(TYPEWRITER_CHAR_SEC, span / (2 * steps)) if span > 0 else 0.0
    filters = []
    for i in range(1, steps + 1):
        cut = math.ceil(len(text) * i / steps)
        t0 = overlay.start + (i - 1) * dt
        if i < steps:
            enable = f"gte(t,{_num(t0)})*lt(t,{_num(t0 + dt)})"
        else:
            enable = f"between(t,{_num(t0)},{_num(overlay.end)})"
        filters.append(_drawtext(overlay, text[:cut], enable, x, y))
    return ",".join(filters)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

EASINGS = {
    "linear": "{p}",
    "ease-in": "({p})*({p})",
    "ease-out": "(1-(1-{p})*(1-{p}))",
    "ease-in-out": "if(lt({p},0.5),2*({p})*({p}),1-pow(-2*({p})+2,2)/2)",
}


def _eased(transition: Transition) -> str:
    p = f"clip((T-{_num(transition.start)})/{_num(transition.duration)},0,1)"
    return EASINGS[transition.effective_easing].format(p=p)


def _windowed(transition: Transition, inside: str) -> str:
    """Apply `inside` only during [start, end]; {c} is the channel."""
    window = f"between(T,{_num(transition.start)},{_num(transition.end)})"
    return _geq(f"if({window},{inside},{{c}}(X,Y))")


def _fade(t: Transition) -> str:
    level = f"(1-{_num(t.effective_intensity)}*(1-{_eased(t)}))"
    return _windowed(t, f"{{c}}(X,Y)*{level}")


def _crossfade(t: Transition) -> str:
    level = f"(1-{_num(t.effective_intensity)}*(1-abs(2*{_eased(t)}-1)))"
    return _windowed(t, f"{{c}}(X,Y)*{level}")


def _dissolve(t: Transition) -> str:
    noise = "mod(abs(sin(X*12.9898+Y*78.233)*43758.5453),1)"
    dim = _num(1.0 - t.effective_intensity)
    return _windowed(t, f"if(lt({noise},{_eased(t)}),{{c}}(X,Y),{{c}}(X,Y)*{dim})")


def _zoom(t: Transition) -> str:
    z = f"(1+{_num(t.effective_intensity)}*(1-{_eased(t)}))"
    return _windowed(t, f"{{c}}((X-W/2)/{z}+W/2,(Y-H/2)/{z}+H/2)")


def _shift(t: Transition, wrap: bool) -> str:
    e = _eased(t)
    d = t.effective_direction
    if d in ("left", "right"):
        off = f"(1-{e})*W"
        src = f"X+{off}" if d == "left" else f"X-{off}"
        if wrap:
            return _windowed(t, f"{{c}}(mod({src}+W,W),Y)")
        valid = f"lt({src},W)" if d == "left" else f"gte({src},0)"
        return _windowed(t, f"if({valid},{{c}}({src},Y),0)")
    off = f"(1-{e})*H"
    src = f"Y+{off}" if d == "up" else f"Y-{off}"
    if wrap:
        return _windowed(t, f"{{c}}(X,mod({src}+H,H))")
    valid = f"lt({src},H)" if d == "up" else f"gte({src},0)"
    return _windowed(t, f"if({valid},{{c}}(X,{src}),0)")


def _slide(t: Transition) -> str:
    return _shift(t, wrap=False)


def _push(t: Transition) -> str:
    return _shift(t, wrap=True)


def _wipe(t: Transition) -> str:
    e = _eased(t)
    mask = {
        "left": f"lt(X,W*{e})",
        "right": f"gte(X,W*(1-{e}))",
        "up": f"lt(Y,H*{e})",
        "down": f"gte(Y,H*(1-{e}))",
    }[t.effective_direction]
    return _windowed(t, f"if({mask},{{c}}(X,Y),0)")


TRANSITIONS = {
    "fade": _fade,
    "crossfade": _crossfade,
    "dissolve": _dissolve,
    "zoom": _zoom,
    "slide": _slide,
    "push": _push,
    "wipe": _wipe,
}


def compile_transition(transition: Transition) -> Instruction:
    render = TRANSITIONS[transition.kind]
    return Instruction(
        kind=InstructionKind.TRANSITION, stream="video",
        expr=render(transition),
        params={
            "transition_id": transition.id,
            "transition": transition.kind,
            "offset": transition.start,
            "duration": transition.duration,
            "direction": transition.effective_direction,
            "easing": transition.effective_easing,
            "intensity": transition.effective_intensity,
        },
    )


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def compile_state(
    state: MaterializedState,
    target_resolution: str,
    target_aspect: str,
    source: MediaInfo,
    audio_tracks: Sequence[AudioTrack] = (),
    lut_dir: str | None = None,
) -> InstructionList:
    """Compile a materialized edit state into an InstructionList.

    Args:
        state: Output of EditLedger.materialize().
        target_resolution: 'source', '480p', '720p', '1080p', '2K' or '4K'.
        target_aspect: 'source', '16:9', '9:16' or '1:1'.
        source: Real dimensions/duration of the clip being exported. Crop
            percentages are converted against these, never a preview canvas.
        audio_tracks: Extra audio mixed under the clip.
        lut_dir: Directory holding .cube files for LUT bundles.

    Raises:
        InvalidInputError: Trim outside the clip, or a crop that rounds to nothing.
    """
    instructions: list[Instruction] = []

    # Trim
    start, end = 0.0, source.duration
    if state.trim is not None:
        if state.trim.start >= source.duration:
            raise InvalidInputError(
                f"Trim start {state.trim.start}s is past the end of a {source.duration}s clip"
            )
        start, end = state.trim.start, min(state.trim.end, source.duration)
        instructions.append(Instruction(
            kind=InstructionKind.TRIM, stream="input",
            params={"start": start, "end": end, "duration": end - start},
        ))
    output_duration = (end - start) / state.speed

    # Geometry
    if state.crop is not None:
        instructions.append(compile_crop(state.crop, source))
    dims = resolve_dimensions(target_resolution, target_aspect, source.width, source.height)
    if dims is not None:
        instructions.append(compile_scale(*dims))

    # Color
    color = compile_color(state.filters, lut_dir=lut_dir)
    if color is not None:
        instructions.append(color)

    # Time
    if state.speed != 1.0:
        instructions += compile_speed(state.speed, source.has_audio)

    # Text & transitions
    instructions += [compile_overlay(o) for o in state.overlays]
    instructions += [compile_transition(t) for t in state.transitions]

    # Audio
    if state.volume != 1.0 and source.has_audio:
        instructions.append(Instruction(
            kind=InstructionKind.VOLUME, stream="audio",
            expr=f"volume={_num(state.volume)}", params={"volume": state.volume},
        ))
    instructions += [
        compile_audio_track(track, i, output_duration) for i, track in enumerate(audio_tracks)
    ]

    result = InstructionList(
        instructions=instructions,
        source=source,
        output_duration=output_duration,
        has_source_audio=source.has_audio,
    )
    logger.debug("Compiled %d instruction(s): %s", len(result), ", ".join(result.categories()))
    return result


def compile_job(job, lut_dir: str | None = None) -> InstructionList:
    """compile_state() for an ExportJob."""
    return compile_state(
        job.state, job.resolution, job.aspect, job.media.info,
        audio_tracks=job.audio_tracks, lut_dir=lut_dir,
    )


def compile_segments(
    state: MaterializedState,
    target_resolution: str,
    target_aspect: str,
    source: MediaInfo,
    points: Sequence[float] | None = None,
    lut_dir: str | None = None,
) -> list[InstructionList]:
    """One InstructionList per split segment.

    Split points are source-timeline seconds. With a trim active, only the
    trimmed span is split.
    """
    points = state.split_points if points is None else tuple(points)
    lo, hi = (0.0, source.duration)
    if state.trim is not None:
        lo, hi = state.trim.start, min(state.trim.end, source.duration)
    segments = split_segments([p - lo for p in points], hi - lo)
    out = []
    for seg_start, seg_end in segments:
        seg_state = state.model_copy(update={
            "trim": Trim(start=lo + seg_start, end=lo + seg_end),
            "split_points": (),
        })
        out.append(compile_state(seg_state, target_resolution, target_aspect, source, lut_dir=lut_dir))
    return out


# ---------------------------------------------------------------------------
# Merge & audio extraction
# ---------------------------------------------------------------------------

MP3_BITRATE = "192k"


def concat_list(names: Sequence[str]) -> bytes:
    """Concat demuxer list naming each staged clip, in play order."""
    lines = ["file '" + name.replace("'", "'\\''") + "'" for name in names]
    return ("\n".join(lines) + "\n").encode("utf-8")


def compile_concat(list_name: str, output_name: str) -> list[str]:
    """Join the clips named in `list_name` end to end without re-encoding.

    Stream copy: the clips must share codecs, dimensions and frame rate.
    """
    return ["-f", "concat", "-safe", "0", "-i", list_name, "-c", "copy", output_name]


def compile_extract_audio(input_name: str, output_name: str, bitrate: str = MP3_BITRATE) -> list[str]:
    """Drop the video stream and encode the soundtrack as MP3."""
    if bitrate not in EncodeSettings.VALID_BITRATES:
        raise InvalidInputError(
            f"Audio bitrate '{bitrate}' not valid. Choose from: {', '.join(EncodeSettings.VALID_BITRATES)}"
        )
    return ["-i", input_name, "-vn", "-acodec", "libmp3lame", "-ab", bitrate, output_name]

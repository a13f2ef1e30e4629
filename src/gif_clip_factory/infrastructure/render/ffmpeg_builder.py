from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from gif_clip_factory.domain.models import Caption, CaptionPosition, ClipRequest
from gif_clip_factory.domain.moment_rules import validate_caption_style
from gif_clip_factory.infrastructure.render.filter_graph import FilterGraphBuilder, FilterStage, stage
from gif_clip_factory.utils.config import RenderConfig


@dataclass(slots=True, frozen=True)
class RenderParams:
    fps: int
    max_dimension: int
    max_colors: int
    dither: str


class GifCommandBuilder:
    def __init__(self, config: RenderConfig) -> None:
        self.config = config

    def resolve_params(self, request: ClipRequest) -> RenderParams:
        tier = self.config.tiers[request.quality]
        return RenderParams(
            fps=request.fps or tier.fps,
            max_dimension=request.scale or tier.max_dimension,
            max_colors=tier.max_colors,
            dither=tier.dither,
        )

    def build(self, request: ClipRequest, output_path: Path) -> list[str]:
        params = self.resolve_params(request)
        return [
            self.config.ffmpeg_bin,
            "-hide_banner",
            "-nostdin",
            "-y",
            "-loglevel",
            "error",
            "-ss",
            f"{request.start_sec:.3f}",
            "-t",
            f"{request.duration:.3f}",
            "-i",
            str(request.source),
            "-filter_complex",
            self.build_filter_graph(params, request.caption),
            "-map",
            "[gif]",
            "-an",
            "-loop",
            str(self.config.loop),
            "-final_delay",
            str(self.config.final_delay_cs),
            "-progress",
            "pipe:1",
            "-nostats",
            "-f",
            "gif",
            str(output_path),
        ]

    def build_filter_graph(self, params: RenderParams, caption: Caption | None) -> str:
        size = params.max_dimension
        base: list[FilterStage] = [
            stage("fps", fps=params.fps),
            stage(
                "scale",
                w=f"min(iw,{size})",
                h=f"min(ih,{size})",
                force_original_aspect_ratio="decrease",
                flags="lanczos",
            ),
            stage("crop", w="trunc(iw/2)*2", h="trunc(ih/2)*2"),
        ]
        if caption is not None and caption.text.strip():
            base.append(self._caption_stage(caption))
        base.append(stage("split", outputs=2))

        use_opts: dict[str, object] = {"dither": params.dither, "diff_mode": "rectangle"}
        if params.dither == "bayer":
            use_opts["bayer_scale"] = 5

        return (
            FilterGraphBuilder()
            .chain(["0:v"], base, ["src", "pal_src"])
            .chain(["pal_src"], [stage("palettegen", max_colors=params.max_colors, stats_mode="diff")], ["pal"])
            .chain(["src", "pal"], [stage("paletteuse", **use_opts)], ["gif"])
            .build()
        )

    def _caption_stage(self, caption: Caption) -> FilterStage:
        style = caption.style
        validate_caption_style(style)

        margin = max(0, int(style.margin))
        if style.position is CaptionPosition.TOP:
            y = str(margin)
        elif style.position is CaptionPosition.CENTER:
            y = "(h-text_h)/2"
        else:
            y = f"h-text_h-{margin}"

        return stage(
            "drawtext",
            fontfile=style.font_file or None,
            text=caption.text.strip(),
            expansion="none",
            fontsize=int(style.font_size),
            fontcolor=style.font_color,
            borderw=max(0, int(style.border_width)),
            bordercolor=style.border_color,
            x="(w-text_w)/2",
            y=y,
        )

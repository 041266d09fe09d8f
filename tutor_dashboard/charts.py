# tutor_dashboard/charts.py
"""統計ビューモデル → plotly Figure."""

from __future__ import annotations
from typing import Dict, List

import plotly.graph_objects as go

from .config import TYPING_LEVELS
from .stats import StudentStatistics, ThemePoint, TypingPoint


def _layout(fig: go.Figure, title: str, **kwargs) -> go.Figure:
    fig.update_layout(
        title=title,
        height=360,
        margin=dict(l=40, r=20, t=50, b=40),
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1),
        **kwargs,
    )
    return fig


def basic_typing_figure(grade: str, points: List[TypingPoint]) -> go.Figure:
    """基礎級: 文字数 (左軸) と 正確率 (右軸)."""
    x = [p.label for p in points]
    fig = go.Figure()
    fig.add_trace(go.Scatter(
        x=x, y=[p.char_count for p in points], name="文字数",
        mode="lines+markers", line=dict(color="#1f77b4"),
    ))
    fig.add_trace(go.Scatter(
        x=x, y=[p.accuracy for p in points], name="正確率(%)",
        mode="lines+markers", line=dict(color="#ff7f0e"), yaxis="y2",
    ))
    return _layout(
        fig, f"{grade} 文字数・正確率の推移",
        yaxis=dict(title="文字数", rangemode="tozero"),
        yaxis2=dict(title="正確率(%)", overlaying="y", side="right", range=[0, 100]),
    )


def _level_axis() -> Dict:
    return dict(
        range=[0.5, len(TYPING_LEVELS) + 0.5],
        tickmode="array",
        tickvals=list(range(1, len(TYPING_LEVELS) + 1)),
        ticktext=list(TYPING_LEVELS),
        title="レベル",
    )


def advanced_average_figure(points: List[TypingPoint]) -> go.Figure:
    advanced = [p for p in points if p.kind == "advanced" and p.value > 0]
    fig = go.Figure(go.Scatter(
        x=[p.label for p in advanced],
        y=[p.value for p in advanced],
        text=[p.grade for p in advanced],
        mode="lines+markers",
        name="平均レベル",
        hovertemplate="%{x} %{text}<extra></extra>",
    ))
    return _layout(fig, "応用級 平均レベルの推移", yaxis=_level_axis())


def theme_levels_figure(grade: str, themes: Dict[str, List[ThemePoint]]) -> go.Figure:
    fig = go.Figure()
    for theme, points in themes.items():
        fig.add_trace(go.Scatter(
            x=[p.label for p in points],
            y=[p.value for p in points],
            text=[p.level for p in points],
            mode="lines+markers",
            name=theme,
            hovertemplate="%{x} %{text}<extra>" + theme + "</extra>",
        ))
    return _layout(fig, f"{grade} テーマ別レベル", yaxis=_level_axis())


def writing_steps_figure(steps: Dict[str, int]) -> go.Figure:
    keys = ["step1", "step2", "step3"]
    fig = go.Figure(go.Bar(
        x=["STEP1", "STEP2", "STEP3"],
        y=[steps.get(k, 0) for k in keys],
        marker_color=["#8dd3c7", "#80b1d3", "#bebada"],
    ))
    return _layout(fig, "書き取り STEP 別回数", yaxis=dict(title="回数", dtick=1, rangemode="tozero"))


def statistics_figures(stats: StudentStatistics) -> List[go.Figure]:
    """表示順に並べた図の一覧. データのないグラフは含めない."""
    figures: List[go.Figure] = []
    for grade, points in stats.basic_by_grade.items():
        figures.append(basic_typing_figure(grade, points))
    if any(p.kind == "advanced" and p.value > 0 for p in stats.typing_progress):
        figures.append(advanced_average_figure(stats.typing_progress))
    for grade, themes in stats.theme_progress.items():
        if themes:
            figures.append(theme_levels_figure(grade, themes))
    if stats.writing_steps:
        figures.append(writing_steps_figure(stats.writing_steps))
    return figures

import logging
from typing import Any

from .ft0 import FILLS, HELPERS_CPP, column_definitions
from .histograms import ft0_qa_specs
from .registry import HistSpec, make_root_hist
from .root_io import build_rdf_from_ao2d, ensure_parent, expand, write_hist
from .settings import RuntimeConfig
from .tasks_common import collect_rresult_ptrs, run_graphs


LOGGER = logging.getLogger("cfqa.tasks")

TASK_DIRECTORY = "ft0-task"

_DECLARED = False


def declare_helpers() -> None:
    global _DECLARED
    if _DECLARED:
        return
    import ROOT

    ROOT.gInterpreter.Declare(HELPERS_CPP)
    _DECLARED = True


def define_ft0_columns(df: Any, runtime_config: RuntimeConfig) -> Any:
    declare_helpers()
    for name, expr in column_definitions(runtime_config.ft0):
        df = df.Define(name, expr)
    return df


def rdf_model(spec: HistSpec) -> Any:
    import ROOT

    x = spec.axes[0]
    if spec.dimension == 1:
        return ROOT.RDF.TH1DModel(spec.name, spec.full_title(), x.nbins, x.low, x.high)
    y = spec.axes[1]
    return ROOT.RDF.TH2DModel(spec.name, spec.full_title(), x.nbins, x.low, x.high, y.nbins, y.low, y.high)


def book_ft0_histograms(df: Any) -> dict[str, Any]:
    specs = {spec.path: spec for spec in ft0_qa_specs()}
    filtered: dict[str, Any] = {}
    out: dict[str, Any] = {}
    for name, x_col, y_col, selection in FILLS:
        if selection is None:
            source = df
        else:
            if selection not in filtered:
                filtered[selection] = df.Filter(selection)
            source = filtered[selection]
        model = rdf_model(specs[name])
        out[name] = source.Histo1D(model, x_col) if y_col is None else source.Histo2D(model, x_col, y_col)
    return out


def as_float_histograms(results: dict[str, Any]) -> dict[str, Any]:
    """TH1F/TH2F copies of the filled RDataFrame TH1D/TH2D results."""
    specs = {spec.path: spec for spec in ft0_qa_specs()}
    out: dict[str, Any] = {}
    for name, result in results.items():
        hist = make_root_hist(specs[name], name)
        hist.Add(result.GetPtr())
        out[name] = hist
    return out


def analyse_ft0_qa(input_file: str, output_file: str, runtime_config: RuntimeConfig) -> dict[str, Any]:
    LOGGER.info("analyse_ft0_qa start input=%s output=%s", input_file, output_file)
    import ROOT

    df, _chain = build_rdf_from_ao2d(runtime_config.table_name("ft0"), input_file)
    df = define_ft0_columns(df, runtime_config)
    results = book_ft0_histograms(df)
    run_graphs(collect_rresult_ptrs(results))
    hists = as_float_histograms(results)

    out_name = expand(output_file)
    ensure_parent(out_name)
    out = ROOT.TFile(out_name, "recreate")
    out.mkdir(TASK_DIRECTORY).cd()
    for name, hist in hists.items():
        write_hist(hist, name)
    out.Close()
    LOGGER.info("analyse_ft0_qa done output=%s entries=%d", output_file, int(hists["hSumAmp"].GetEntries()))
    return hists

"""
Global mesh orchestration.

``GlobalMesher`` plans the radial layers once, builds the slices and the
two lookup tables concurrently on a ``concurrent.futures`` executor,
reconciles every pair of neighboring slices and finalizes them.

A failure of a table build is recorded and logged without aborting the
topology; any topology failure aborts the whole build.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

from .chunk_builder import ChunkTopologyBuilder, Slice
from .config import MesherConfig
from .decomposer import DomainDecomposer
from .earth_model import PlanetModel
from .errors import ModelEvaluationError
from .layers import LayerPlan, RadialLayerPlanner
from .tables import (
    AttenuationTable,
    AttenuationTableBuilder,
    GravityTable,
    GravityTableBuilder,
)

logger = logging.getLogger(__name__)


@dataclass
class MeshResult:
    """
    Output of a mesher run.

    Attributes
    ----------
    plan : LayerPlan
        Radial plan shared by every slice
    slices : dict
        Finalized slices keyed by rank
    attenuation : AttenuationTable or None
        None when the table build failed (see ``table_errors``)
    gravity : GravityTable or None
        None when the table build failed (see ``table_errors``)
    table_errors : dict
        Table name -> ModelEvaluationError
    """

    config: MesherConfig
    plan: LayerPlan
    slices: Dict[int, Slice]
    attenuation: Optional[AttenuationTable] = None
    gravity: Optional[GravityTable] = None
    table_errors: Dict[str, ModelEvaluationError] = field(default_factory=dict)

    @property
    def nspec(self) -> int:
        return sum(mesh.nspec for mesh in self.slices.values())

    def slices_of(self, chunk):
        return [mesh for mesh in self.slices.values() if mesh.chunk == chunk]


class GlobalMesher:
    """
    Build a decomposed global mesh and its lookup tables.

    Parameters
    ----------
    config : MesherConfig
        Mesher configuration
    model : object, optional
        Earth model provider for the tables (``properties_at``); PREM
        from the bundled models by default

    Examples
    --------
    >>> config = MesherConfig(nex_xi=16, nex_eta=16, implement_fourth_doubling=False)
    >>> result = GlobalMesher(config).build()
    >>> len(result.slices)
    6
    """

    def __init__(self, config: MesherConfig, model=None):
        self.config = config
        self.model = model if model is not None else PlanetModel.from_standard_model("prem")
        self.plan: Optional[LayerPlan] = None

    def prepare(self):
        """
        Plan the layers and run every configuration check.

        Raises
        ------
        ConfigurationError
            Before any generation work when the configuration is
            inconsistent
        """
        self.plan = RadialLayerPlanner(self.config).plan()
        self.builder = ChunkTopologyBuilder(self.config, self.plan)
        self.decomposer = DomainDecomposer(self.config, self.plan)
        return self.plan

    def _build_slice(self, rank: int) -> Slice:
        chunk, iproc_xi, iproc_eta = self.decomposer.locate(rank)
        mesh = self.builder.build_slice(chunk, iproc_xi, iproc_eta, rank=rank)
        return self.decomposer.describe(mesh)

    def build(self, ranks: Optional[Iterable[int]] = None,
              max_workers: Optional[int] = None,
              tables: bool = True) -> MeshResult:
        """
        Build slices and tables.

        Parameters
        ----------
        ranks : iterable of int, optional
            Slices to build; every slice by default. Pairs with a slice
            outside this set are not reconciled.
        max_workers : int, optional
            Executor size
        tables : bool
            Also build the attenuation and gravity tables

        Returns
        -------
        MeshResult
        """
        start = time.time()
        plan = self.prepare()
        ranks = sorted(set(ranks)) if ranks is not None else self.decomposer.ranks()
        for rank in ranks:
            self.decomposer.locate(rank)

        logger.info(
            f"Meshing {len(ranks)} slice(s), {self.config.nchunks} chunk(s), "
            f"nex {self.config.nex_xi}, {plan.n_layers} layers"
        )

        slices: Dict[int, Slice] = {}
        result = MeshResult(config=self.config, plan=plan, slices=slices)
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            table_futures = {}
            if tables:
                table_futures[executor.submit(
                    AttenuationTableBuilder(self.config, self.model).build)] = "attenuation"
                table_futures[executor.submit(
                    GravityTableBuilder(self.config, self.model).build)] = "gravity"
            slice_futures = {executor.submit(self._build_slice, rank): rank for rank in ranks}

            try:
                for future in as_completed(slice_futures):
                    slices[slice_futures[future]] = future.result()
            except Exception:
                for future in slice_futures:
                    future.cancel()
                raise

            for future in as_completed(table_futures):
                name = table_futures[future]
                try:
                    setattr(result, name, future.result())
                except ModelEvaluationError as e:
                    logger.error(f"{name.capitalize()} table failed: {e}")
                    result.table_errors[name] = e

        self.decomposer.reconcile(slices)
        logger.info(
            f"Mesh built: {result.nspec} elements in {len(slices)} slices "
            f"({time.time() - start:.2f} s)"
        )
        return result

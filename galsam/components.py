"""Baryonic reservoirs, galaxies, subhalos and halos.

Ownership follows the merger tree: a :class:`Halo` lists its
:class:`Subhalo` records, and every :class:`Galaxy` belongs to exactly one
subhalo at a time.  Links to descendants are stored as integer ids and
resolved through :class:`galsam.tree.HaloCatalog`.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from .errors import TreeError

logger = logging.getLogger(__name__)


class GalaxyType(enum.IntEnum):
    CENTRAL = 0
    TYPE1 = 1
    TYPE2 = 2


class SubhaloType(enum.IntEnum):
    CENTRAL = 0
    SATELLITE = 1


@dataclass
class BaryonBase:
    """Mass and metal content of a reservoir."""

    mass: float = 0.0
    mass_metals: float = 0.0

    def __iadd__(self, other: "BaryonBase") -> "BaryonBase":
        self.mass += other.mass
        self.mass_metals += other.mass_metals
        return self

    def __add__(self, other: "BaryonBase") -> "BaryonBase":
        return BaryonBase(self.mass + other.mass, self.mass_metals + other.mass_metals)

    def metallicity(self) -> float:
        if self.mass <= 0.0:
            return 0.0
        return self.mass_metals / self.mass

    def restore_baryon(self) -> None:
        self.mass = 0.0
        self.mass_metals = 0.0


@dataclass
class Baryon(BaryonBase):
    """Reservoir carrying specific angular momentum and a scale radius.

    ``sAM`` is given in Mpc/h km/s and ``rscale`` in Mpc/h.
    """

    sAM: float = 0.0
    rscale: float = 0.0

    def angular_momentum(self) -> float:
        return self.sAM * self.mass

    def __iadd__(self, other: BaryonBase) -> "Baryon":
        other_j = other.angular_momentum() if isinstance(other, Baryon) else 0.0
        total_j = self.angular_momentum() + other_j
        self.mass += other.mass
        self.mass_metals += other.mass_metals
        self.sAM = total_j / self.mass if self.mass > 0.0 else 0.0
        return self

    def __add__(self, other: BaryonBase) -> "Baryon":
        result = Baryon(self.mass, self.mass_metals, self.sAM, self.rscale)
        result += other
        return result

    def restore_baryon(self) -> None:
        super().restore_baryon()
        self.sAM = 0.0
        self.rscale = 0.0


@dataclass
class BlackHole:
    mass: float = 0.0
    mass_metals: float = 0.0


@dataclass
class InteractionItem:
    """Counters of the interactions a galaxy went through in one snapshot."""

    major_mergers: int = 0
    minor_mergers: int = 0
    disk_instabilities: int = 0

    def mergers(self) -> int:
        return self.major_mergers + self.minor_mergers

    def restore_interaction_item(self) -> None:
        self.major_mergers = 0
        self.minor_mergers = 0
        self.disk_instabilities = 0


@dataclass
class HistoryItem:
    """Star formation rates of a galaxy recorded at the end of a snapshot."""

    snapshot: int
    sfr_disk: float = 0.0
    sfr_bulge_mergers: float = 0.0
    sfr_bulge_diskins: float = 0.0
    sfr_z_disk: float = 0.0
    sfr_z_bulge_mergers: float = 0.0
    sfr_z_bulge_diskins: float = 0.0


@dataclass
class Galaxy:
    """A galaxy with disk and bulge reservoirs.

    ``galaxy_type`` is re-derived at every snapshot by the transfer step
    (:func:`galsam.evolve_halos.adjust_main_galaxy`).
    """

    id: int
    galaxy_type: GalaxyType = GalaxyType.CENTRAL
    disk_stars: Baryon = field(default_factory=Baryon)
    disk_gas: Baryon = field(default_factory=Baryon)
    bulge_stars: Baryon = field(default_factory=Baryon)
    bulge_gas: Baryon = field(default_factory=Baryon)
    smbh: BlackHole = field(default_factory=BlackHole)
    vmax: float = 0.0

    sfr_disk: float = 0.0
    sfr_z_disk: float = 0.0
    sfr_bulge_mergers: float = 0.0
    sfr_z_bulge_mergers: float = 0.0
    sfr_bulge_diskins: float = 0.0
    sfr_z_bulge_diskins: float = 0.0

    galaxymergers_burst_stars: BaryonBase = field(default_factory=BaryonBase)
    diskinstabilities_burst_stars: BaryonBase = field(default_factory=BaryonBase)
    interaction: InteractionItem = field(default_factory=InteractionItem)

    # halo properties frozen when the galaxy becomes an orphan
    concentration_type2: float = 0.0
    msubhalo_type2: float = 0.0
    lambda_type2: float = 0.0

    history: List[HistoryItem] = field(default_factory=list)
    mean_stellar_age: float = 0.0
    total_stellar_mass_ever_formed: float = 0.0

    def stellar_mass(self) -> float:
        return self.disk_stars.mass + self.bulge_stars.mass

    def gas_mass(self) -> float:
        return self.disk_gas.mass + self.bulge_gas.mass

    def baryon_mass(self) -> float:
        return self.stellar_mass() + self.gas_mass() + self.smbh.mass

    def sfr_total(self) -> float:
        return self.sfr_disk + self.sfr_bulge_mergers + self.sfr_bulge_diskins

    def reset_sfr(self) -> None:
        """Zero the star formation accumulators ahead of a new snapshot."""

        self.sfr_disk = 0.0
        self.sfr_z_disk = 0.0
        self.sfr_bulge_mergers = 0.0
        self.sfr_z_bulge_mergers = 0.0
        self.sfr_bulge_diskins = 0.0
        self.sfr_z_bulge_diskins = 0.0


@dataclass
class CoolingSubhaloTracking:
    """Bookkeeping of the last cooling episode of a subhalo."""

    tcooling: float = 0.0
    deltat: float = 0.0
    mass_cooled: float = 0.0


@dataclass
class Subhalo:
    """A subhalo at one snapshot, owning its galaxies and halo gas."""

    id: int
    snapshot: int
    host_halo_id: int
    descendant_id: Optional[int] = None
    subhalo_type: SubhaloType = SubhaloType.CENTRAL
    main_progenitor: bool = False
    last_snapshot_identified: int = -1

    mvir: float = 0.0
    vvir: float = 0.0
    vcirc: float = 0.0
    concentration: float = 0.0
    lambda_: float = 0.0

    cold_halo_gas: Baryon = field(default_factory=Baryon)
    hot_halo_gas: Baryon = field(default_factory=Baryon)
    ejected_galaxy_gas: Baryon = field(default_factory=Baryon)
    cooling_subhalo_tracking: CoolingSubhaloTracking = field(default_factory=CoolingSubhaloTracking)

    galaxies: List[Galaxy] = field(default_factory=list)

    def galaxy_count(self) -> int:
        return len(self.galaxies)

    def _first_of_type(self, galaxy_type: GalaxyType) -> Optional[Galaxy]:
        for galaxy in self.galaxies:
            if galaxy.galaxy_type == galaxy_type:
                return galaxy
        return None

    def central_galaxy(self) -> Optional[Galaxy]:
        return self._first_of_type(GalaxyType.CENTRAL)

    def type1_galaxy(self) -> Optional[Galaxy]:
        return self._first_of_type(GalaxyType.TYPE1)

    def total_baryon_mass(self) -> float:
        """Mass in halo gas reservoirs plus every galaxy hosted here."""

        mass = self.cold_halo_gas.mass + self.hot_halo_gas.mass + self.ejected_galaxy_gas.mass
        return mass + sum(galaxy.baryon_mass() for galaxy in self.galaxies)

    def check_subhalo_galaxy_composition(self) -> None:
        """Validate the galaxy types hosted by this subhalo.

        A central subhalo hosts at most one CENTRAL galaxy and no TYPE1
        galaxy; a satellite subhalo hosts no CENTRAL galaxy and at most one
        TYPE1 galaxy.
        """

        n_central = sum(1 for g in self.galaxies if g.galaxy_type == GalaxyType.CENTRAL)
        n_type1 = sum(1 for g in self.galaxies if g.galaxy_type == GalaxyType.TYPE1)
        if self.subhalo_type == SubhaloType.CENTRAL:
            if n_central > 1 or n_type1 > 0:
                raise TreeError(
                    f"Central subhalo {self.id} at snapshot {self.snapshot} has "
                    f"{n_central} central and {n_type1} type 1 galaxies"
                )
        else:
            if n_central > 0 or n_type1 > 1:
                raise TreeError(
                    f"Satellite subhalo {self.id} at snapshot {self.snapshot} has "
                    f"{n_central} central and {n_type1} type 1 galaxies"
                )

    def transfer_galaxies_to(self, target: "Subhalo") -> None:
        """Move ownership of every galaxy to ``target``."""

        if target is self:
            raise TreeError(f"Subhalo {self.id} cannot transfer galaxies to itself")
        target.galaxies.extend(self.galaxies)
        self.galaxies = []


@dataclass
class Halo:
    """A host halo grouping the subhalos that share its id."""

    id: int
    snapshot: int
    subhalos: List[Subhalo] = field(default_factory=list)
    mvir: float = 0.0

    def add_subhalo(self, subhalo: Subhalo) -> None:
        if subhalo.snapshot != self.snapshot:
            raise TreeError(
                f"Subhalo {subhalo.id} (snapshot {subhalo.snapshot}) cannot join halo "
                f"{self.id} at snapshot {self.snapshot}"
            )
        subhalo.host_halo_id = self.id
        self.subhalos.append(subhalo)
        self.mvir += subhalo.mvir

    def all_subhalos(self) -> Iterator[Subhalo]:
        return iter(self.subhalos)

    def central_subhalo(self) -> Optional[Subhalo]:
        for subhalo in self.subhalos:
            if subhalo.subhalo_type == SubhaloType.CENTRAL:
                return subhalo
        return None

    def galaxy_count(self) -> int:
        return sum(subhalo.galaxy_count() for subhalo in self.subhalos)


__all__ = [
    "GalaxyType",
    "SubhaloType",
    "BaryonBase",
    "Baryon",
    "BlackHole",
    "InteractionItem",
    "HistoryItem",
    "Galaxy",
    "CoolingSubhaloTracking",
    "Subhalo",
    "Halo",
]

"""
Pipeline parameter schema.

The parameter set is a fixed schema of named, typed fields validated once
at load time and immutable afterwards. Field names are the snake_case form
of the original pipeline parameters; the legacy mixed-case names
(``FW_primer``, ``Q2imported``, ``onlyDenoising`` ...) are accepted as
aliases so existing parameter files keep working.
"""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from ..core.exceptions import ConfigurationError


IUPAC_PRIMER = re.compile(r"^[ACGTURYSWKMBDHVNI]+$", re.IGNORECASE)

DEFAULT_REFERENCE_DATABASE = (
    "https://www.arb-silva.de/fileadmin/silva_databases/qiime/Silva_132_release.zip"
)


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class PipelineParameters(BaseModel):
    """Validated parameter set driving branch selection and stage commands."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    # Inputs
    reads: str = "data"
    extension: str = "/*_R{1,2}_001.fastq.gz"
    metadata: Optional[Path] = None
    classifier: Optional[Path] = None
    q2_imported: Optional[Path] = Field(
        default=None, validation_alias=_alias("q2_imported", "Q2imported")
    )
    reference_database: str = DEFAULT_REFERENCE_DATABASE
    multiqc_config: Optional[Path] = None
    outdir: Path = Path("results")

    # Primers and trimming
    fw_primer: Optional[str] = Field(
        default=None, validation_alias=_alias("fw_primer", "FW_primer")
    )
    rv_primer: Optional[str] = Field(
        default=None, validation_alias=_alias("rv_primer", "RV_primer")
    )
    retain_untrimmed: bool = False
    phred64: bool = False

    # Denoising
    trunclenf: Optional[int] = Field(default=None, ge=0)
    trunclenr: Optional[int] = Field(default=None, ge=0)
    trunc_qmin: int = Field(default=25, ge=0)
    trunc_rmin: float = Field(default=0.75, gt=0, le=1)

    # Classifier
    dereplication: int = Field(default=99, ge=80, le=100)

    # Taxa filtering
    exclude_taxa: str = "mitochondria,chloroplast"
    min_frequency: Optional[int] = Field(default=None, ge=1)
    min_samples: Optional[int] = Field(default=None, ge=1)

    # Run shaping
    until_q2_import: bool = Field(
        default=False, validation_alias=_alias("until_q2_import", "untilQ2import")
    )
    only_denoising: bool = Field(
        default=False, validation_alias=_alias("only_denoising", "onlyDenoising")
    )
    keep_intermediates: bool = Field(
        default=False, validation_alias=_alias("keep_intermediates", "keepIntermediates")
    )

    # Skip flags
    skip_fastqc: bool = False
    skip_multiqc: bool = False
    skip_taxonomy: bool = False
    skip_barplot: bool = False
    skip_abundance_tables: bool = False
    skip_alpha_rarefaction: bool = False
    skip_diversity_indices: bool = False
    skip_ancom: bool = False

    # Diversity
    metadata_category: Optional[str] = None

    # Resources, passed through to tools untouched
    max_cpus: int = Field(default=4, ge=1, validation_alias=_alias("max_cpus", "maxcpus"))
    max_memory: str = Field(default="16 GB", validation_alias=_alias("max_memory", "maxmemory"))

    # Notification
    email: Optional[str] = None
    plaintext_email: bool = False
    run_name: Optional[str] = Field(default=None, validation_alias=_alias("run_name", "name"))

    @field_validator("fw_primer", "rv_primer")
    @classmethod
    def check_primer(cls, v: Optional[str]) -> Optional[str]:
        """Primers must be IUPAC nucleotide strings."""
        if v is None or v == "":
            return None
        if not IUPAC_PRIMER.match(v):
            raise ValueError(f"Primer contains non-IUPAC characters: {v}")
        return v.upper()

    @field_validator("exclude_taxa")
    @classmethod
    def normalise_exclude_taxa(cls, v: str) -> str:
        taxa = [t.strip() for t in v.split(",") if t.strip()]
        if not taxa:
            return "none"
        return ",".join(taxa)

    @field_validator("metadata_category")
    @classmethod
    def normalise_categories(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        categories = [c.strip() for c in v.split(",") if c.strip()]
        return ",".join(categories) or None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: Optional[str]) -> Optional[str]:
        if v and "@" not in v:
            raise ValueError(f"Not an e-mail address: {v}")
        return v or None

    @model_validator(mode="after")
    def check_conflicts(self) -> "PipelineParameters":
        if self.q2_imported is not None and self.until_q2_import:
            raise ValueError(
                "q2_imported and until_q2_import are mutually exclusive: "
                "an imported artifact cannot be produced again"
            )
        if (self.trunclenf is None) != (self.trunclenr is None):
            raise ValueError("trunclenf and trunclenr must be given together")
        return self

    @property
    def taxa_to_exclude(self) -> List[str]:
        """Return the taxa removed by filtering, empty when disabled."""
        if self.exclude_taxa.lower() == "none":
            return []
        return self.exclude_taxa.split(",")

    @property
    def metadata_categories(self) -> List[str]:
        if not self.metadata_category:
            return []
        return self.metadata_category.split(",")

    @property
    def reads_pattern(self) -> str:
        return f"{self.reads.rstrip('/')}{self.extension}"

    def non_default(self) -> Dict[str, Any]:
        """Return parameters that differ from their defaults."""
        return self.model_dump(mode="json", exclude_defaults=True)

    def with_overrides(self, **overrides: Any) -> "PipelineParameters":
        """Return a new validated parameter set with ``overrides`` applied."""
        data = self.model_dump(exclude_unset=True)
        data.update(self.canonical_keys(overrides))
        return type(self).from_dict(data)

    @classmethod
    def canonical_keys(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """Rename legacy parameter names to their field names."""
        lookup = {}
        for name, info in cls.model_fields.items():
            alias = info.validation_alias
            if isinstance(alias, AliasChoices):
                for choice in alias.choices:
                    lookup[choice] = name
        return {lookup.get(key, key): value for key, value in data.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineParameters":
        """Validate ``data`` and raise ConfigurationError on failure."""
        try:
            return cls.model_validate(cls.canonical_keys(data))
        except ValidationError as e:
            problems = []
            for error in e.errors():
                location = ".".join(str(part) for part in error["loc"]) or "parameters"
                problems.append(f"{location}: {error['msg']}")
            first = e.errors()[0]["loc"] if e.errors() else ()
            raise ConfigurationError(
                "Invalid pipeline parameters: " + "; ".join(problems),
                config_key=str(first[0]) if first else None,
            ) from e

    @classmethod
    def from_file(cls, path: Path, **overrides: Any) -> "PipelineParameters":
        """Load a JSON parameter file, Nextflow ``-params-file`` style."""
        path = Path(path)
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(
                f"Parameter file not found: {path}", config_key="params_file"
            ) from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Parameter file is not valid JSON: {path}: {e}",
                config_key="params_file",
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Parameter file must contain a JSON object: {path}",
                config_key="params_file",
            )
        data = cls.canonical_keys(data)
        data.update(cls.canonical_keys(overrides))
        return cls.from_dict(data)

"""
Stage catalog for the amplicon sequencing workflow.

Every stage of the workflow is declared here once, in execution-preference
order, with the channels it consumes and produces, its enable predicate and
the shell template of the external tool call. Stages that belong to a
branch carry the branch name instead of a predicate; the branch resolver
decides which alternative runs.

Command templates are rendered with ``str.format_map``; literal shell
braces are therefore doubled. Available fields:

    {in[<channel>]}    value of a consumed channel
    {out[<channel>]}   path of a produced channel
    {params.<field>}   pipeline parameter
    {opts[<name>]}     option snippet derived from the parameters
    {task.cpus}, {task.memory}, {task.workdir}, {task.publish_dir}
"""

from typing import Dict, List, Optional, Tuple

from ..config.parameters import PipelineParameters
from ..core.types import Stage, StageKind


SOFTWARE_VERSIONS = """\
{{
  echo "qiime2 $(qiime --version | head -n 1)"
  echo "fastqc $(fastqc --version)"
  echo "cutadapt $(cutadapt --version)"
  echo "multiqc $(multiqc --version)"
  echo "R $(R --version | head -n 1)"
}} > {out[software_versions]} 2>&1
"""

FASTQC = """\
mkdir -p {out[fastqc_reports]}
fastqc --quiet --threads {task.cpus} --outdir {out[fastqc_reports]} {in[raw_reads]}{params.extension}
"""

TRIMMING = """\
mkdir -p {out[trimmed_reads]} {out[cutadapt_logs]}
for r1 in {in[raw_reads]}/*{opts[r1_suffix]}; do
  sample=$(basename "$r1" {opts[r1_suffix]})
  r2="$(dirname "$r1")/${{sample}}{opts[r2_suffix]}"
  cutadapt -g {params.fw_primer} -G {params.rv_primer} {opts[discard_untrimmed]} \\
    --cores {task.cpus} \\
    -o {out[trimmed_reads]}/${{sample}}{opts[r1_suffix]} \\
    -p {out[trimmed_reads]}/${{sample}}{opts[r2_suffix]} \\
    "$r1" "$r2" > {out[cutadapt_logs]}/${{sample}}.cutadapt.log
done
"""

MULTIQC = """\
multiqc --force {opts[multiqc_config]} --filename {out[multiqc_report]} \\
  {in[cutadapt_logs]} {in[fastqc_reports]} {in[software_versions]}
"""

QIIME_IMPORT = """\
printf 'sample-id\\tforward-absolute-filepath\\treverse-absolute-filepath\\n' > manifest.tsv
for r1 in {in[trimmed_reads]}/*{opts[r1_suffix]}; do
  sample=$(basename "$r1" {opts[r1_suffix]})
  r2="$(dirname "$r1")/${{sample}}{opts[r2_suffix]}"
  printf '%s\\t%s\\t%s\\n' "$sample" "$(readlink -f "$r1")" "$(readlink -f "$r2")" >> manifest.tsv
done
qiime tools import \\
  --type 'SampleData[PairedEndSequencesWithQuality]' \\
  --input-path manifest.tsv \\
  --input-format {opts[manifest_format]} \\
  --output-path {out[demux]}
"""

DEMUX_SUMMARY = """\
qiime demux summarize --i-data {in[demux]} --o-visualization {out[demux_visualization]}
qiime tools export --input-path {out[demux_visualization]} --output-path {out[demux_summary]}
"""

ESTIMATE_TRUNCATION = """\
dada_trunc_parameter.py \\
  {in[demux_summary]}/forward-seven-number-summaries.tsv \\
  {in[demux_summary]}/reverse-seven-number-summaries.tsv \\
  {params.trunc_qmin} {params.trunc_rmin} > {out[trunc_lengths]}
"""

DADA2_DENOISE = """\
trunc="{in[trunc_lengths]}"
if [ -f "$trunc" ]; then trunc=$(tr -d '[:space:]' < "$trunc"); fi
qiime dada2 denoise-paired \\
  --i-demultiplexed-seqs {in[demux]} \\
  --p-trunc-len-f "${{trunc%,*}}" \\
  --p-trunc-len-r "${{trunc#*,}}" \\
  --p-n-threads {task.cpus} \\
  --o-table {out[dada_table]} \\
  --o-representative-sequences {out[dada_repseqs]} \\
  --o-denoising-stats {out[dada_stats]} \\
  --verbose
"""

TRAIN_CLASSIFIER = """\
db="{in[reference_database]}"
case "$db" in
  http*|ftp*) wget -q -O reference.zip "$db"; db=reference.zip ;;
esac
unzip -qq -o "$db" -d reference
fasta=$(ls reference/*/rep_set/rep_set_16S_only/{params.dereplication}/*_{params.dereplication}_16S.fna)
taxonomy=$(ls reference/*/taxonomy/16S_only/{params.dereplication}/consensus_taxonomy_7_levels.txt)
qiime tools import --type 'FeatureData[Sequence]' --input-path "$fasta" --output-path ref-seq.qza
qiime tools import --type 'FeatureData[Taxonomy]' --input-format HeaderlessTSVTaxonomyFormat \\
  --input-path "$taxonomy" --output-path ref-taxonomy.qza
qiime feature-classifier extract-reads --i-sequences ref-seq.qza \\
  --p-f-primer {params.fw_primer} --p-r-primer {params.rv_primer} \\
  --o-reads ref-seq-extracted.qza --quiet
qiime feature-classifier fit-classifier-naive-bayes \\
  --i-reference-reads ref-seq-extracted.qza \\
  --i-reference-taxonomy ref-taxonomy.qza \\
  --o-classifier {out[classifier]} --quiet
"""

CLASSIFY = """\
qiime feature-classifier classify-sklearn \\
  --i-classifier {in[classifier]} \\
  --p-n-jobs {task.cpus} \\
  --i-reads {in[dada_repseqs]} \\
  --o-classification {out[taxonomy]} --verbose
qiime tools export --input-path {out[taxonomy]} --output-path taxonomy_export
cp taxonomy_export/taxonomy.tsv {out[taxonomy_tsv]}
"""

FILTER_TAXA = """\
qiime feature-table filter-features --i-table {in[dada_table]} \\
  {opts[min_frequency]} {opts[min_samples]} --o-filtered-table abundance-filtered.qza
qiime taxa filter-table --i-table abundance-filtered.qza --i-taxonomy {in[taxonomy]} \\
  --p-exclude "{opts[exclude_taxa]}" --p-mode contains --o-filtered-table {out[table]}
qiime feature-table filter-seqs --i-data {in[dada_repseqs]} --i-table {out[table]} \\
  --o-filtered-data {out[repseqs]}
"""

EXPORT_ASV = """\
qiime tools export --input-path {in[table]} --output-path table_export
biom convert -i table_export/feature-table.biom -o {out[asv_table]} --to-tsv
qiime tools export --input-path {in[repseqs]} --output-path repseqs_export
cp repseqs_export/dna-sequences.fasta {out[asv_fasta]}
"""

FILTER_STATS = """\
qiime tools export --input-path {in[dada_stats]} --output-path stats_export
count_table_filter_stats.py stats_export/stats.tsv {in[asv_table]} > {out[filter_stats]}
"""

ABUNDANCE_TABLES = """\
mkdir -p {out[abundance_tables]}
qiime feature-table relative-frequency --i-table {in[table]} --o-relative-frequency-table rel-ASV.qza
qiime tools export --input-path rel-ASV.qza --output-path rel-ASV
biom convert -i rel-ASV/feature-table.biom -o {out[abundance_tables]}/rel-table-ASV.tsv --to-tsv
for level in 2 3 4 5 6 7; do
  qiime taxa collapse --i-table {in[table]} --i-taxonomy {in[taxonomy]} \\
    --p-level $level --o-collapsed-table table-$level.qza
  qiime feature-table relative-frequency --i-table table-$level.qza \\
    --o-relative-frequency-table rel-$level.qza
  qiime tools export --input-path rel-$level.qza --output-path rel-$level
  biom convert -i rel-$level/feature-table.biom -o {out[abundance_tables]}/rel-table-$level.tsv --to-tsv
done
"""

BARPLOT = """\
qiime taxa barplot --i-table {in[table]} --i-taxonomy {in[taxonomy]} \\
  --m-metadata-file {in[metadata]} --o-visualization {out[barplot]}
"""

PHYLOGENY = """\
qiime phylogeny align-to-tree-mafft-fasttree \\
  --i-sequences {in[repseqs]} \\
  --p-n-threads {task.cpus} \\
  --o-alignment aligned-rep-seqs.qza \\
  --o-masked-alignment masked-aligned-rep-seqs.qza \\
  --o-tree unrooted-tree.qza \\
  --o-rooted-tree {out[rooted_tree]}
"""


# Per-sample read totals of the exported ASV table; the first two lines are
# the biom banner and the header.
def _sample_depth(cmp: str) -> str:
    return (
        "awk -F'\\t' 'NR>2{{for(i=2;i<=NF;i++) s[i]+=$i}} "
        "END{{m=-1; for(i in s) if(m<0 || s[i]" + cmp + "m) m=s[i]; print int(m)}}' "
        "{in[asv_table]}"
    )


ALPHA_RAREFACTION = """\
maxdepth=$(%s)
qiime diversity alpha-rarefaction --i-table {in[table]} --i-phylogeny {in[rooted_tree]} \\
  --p-max-depth "$maxdepth" --m-metadata-file {in[metadata]} \\
  --p-steps 40 --p-iterations 10 --o-visualization {out[rarefaction]}
""" % _sample_depth(">")

COMBINE_TABLE = """\
combine_table.r {in[asv_table]} {in[asv_fasta]} {in[taxonomy_tsv]}
mv combined_ASV_table.tsv {out[combined_table]}
"""

DIVERSITY_CORE = """\
mindepth=$(%s)
qiime diversity core-metrics-phylogenetic \\
  --m-metadata-file {in[metadata]} \\
  --i-phylogeny {in[rooted_tree]} \\
  --i-table {in[table]} \\
  --p-sampling-depth "$mindepth" \\
  --p-n-jobs-or-threads {task.cpus} \\
  --output-dir {out[core_metrics]} --quiet
""" % _sample_depth("<")

METADATA_CATEGORIES = """\
if [ -n "{opts[metadata_category]}" ]; then
  echo "{opts[metadata_category]}"
else
  metadata_category.r {in[metadata]}
fi > {out[metadata_categories]}
"""

ALPHA_DIVERSITY = """\
mkdir -p {out[alpha_diversity]}
for index in faith_pd evenness observed_features shannon; do
  qiime diversity alpha-group-significance \\
    --i-alpha-diversity {in[core_metrics]}/${{index}}_vector.qza \\
    --m-metadata-file {in[metadata]} \\
    --o-visualization {out[alpha_diversity]}/${{index}}.qzv
done
"""

BETA_DIVERSITY = """\
mkdir -p {out[beta_diversity]}
for metric in unweighted_unifrac weighted_unifrac jaccard bray_curtis; do
  for category in $(tr ',' ' ' < {in[metadata_categories]}); do
    qiime diversity beta-group-significance \\
      --i-distance-matrix {in[core_metrics]}/${{metric}}_distance_matrix.qza \\
      --m-metadata-file {in[metadata]} --m-metadata-column "$category" --p-pairwise \\
      --o-visualization {out[beta_diversity]}/${{metric}}-${{category}}.qzv
  done
done
"""

BETA_ORDINATION = """\
mkdir -p {out[beta_ordination]}
for metric in unweighted_unifrac weighted_unifrac jaccard bray_curtis; do
  qiime emperor plot --i-pcoa {in[core_metrics]}/${{metric}}_pcoa_results.qza \\
    --m-metadata-file {in[metadata]} \\
    --o-visualization {out[beta_ordination]}/${{metric}}-PCoA.qzv
done
"""

ANCOM = """\
mkdir -p {out[ancom]}
qiime feature-table filter-features --i-table {in[table]} --p-min-samples 2 \\
  --o-filtered-table ancom-input.qza
qiime composition add-pseudocount --i-table ancom-input.qza --o-composition-table comp-ASV.qza
for category in $(tr ',' ' ' < {in[metadata_categories]}); do
  qiime composition ancom --i-table comp-ASV.qza --m-metadata-file {in[metadata]} \\
    --m-metadata-column "$category" --o-visualization {out[ancom]}/ancom-ASV-${{category}}.qzv
  for level in 2 3 4 5 6; do
    qiime taxa collapse --i-table ancom-input.qza --i-taxonomy {in[taxonomy]} \\
      --p-level $level --o-collapsed-table collapsed-$level.qza
    qiime composition add-pseudocount --i-table collapsed-$level.qza \\
      --o-composition-table comp-$level.qza
    qiime composition ancom --i-table comp-$level.qza --m-metadata-file {in[metadata]} \\
      --m-metadata-column "$category" \\
      --o-visualization {out[ancom]}/ancom-level-$level-${{category}}.qzv
  done
done
"""


STAGES: Tuple[Stage, ...] = (
    Stage(
        name="software_versions",
        outputs={"software_versions": "software_versions.txt"},
        command=SOFTWARE_VERSIONS,
        publish_dir="pipeline_info",
        description="Collect tool versions",
    ),
    Stage(
        name="raw_reads",
        kind=StageKind.SOURCE,
        sources={"raw_reads": "{params.reads}"},
        branch="reads",
        description="Raw paired-end read directory",
    ),
    Stage(
        name="fastqc",
        inputs=("raw_reads",),
        outputs={"fastqc_reports": "."},
        command=FASTQC,
        enabled_when=lambda f: f.run_fastqc,
        publish_dir="fastQC",
        cpus=2,
        description="Read quality reports",
    ),
    Stage(
        name="trimming",
        inputs=("raw_reads",),
        outputs={"trimmed_reads": "reads", "cutadapt_logs": "logs"},
        command=TRIMMING,
        branch="reads",
        publish_dir="trimmed",
        cpus=None,
        description="Primer removal with cutadapt",
    ),
    Stage(
        name="multiqc",
        inputs=("cutadapt_logs",),
        optional_inputs=("fastqc_reports", "software_versions"),
        outputs={"multiqc_report": "multiqc_report.html"},
        command=MULTIQC,
        enabled_when=lambda f: f.run_multiqc,
        publish_dir="MultiQC",
        description="Aggregate QC report",
    ),
    Stage(
        name="qiime_import",
        inputs=("trimmed_reads",),
        outputs={"demux": "demux.qza"},
        command=QIIME_IMPORT,
        branch="reads",
        publish_dir="demux",
        description="Import trimmed reads into QIIME2",
    ),
    Stage(
        name="load_imported_artifact",
        kind=StageKind.SOURCE,
        sources={"demux": "{params.q2_imported}"},
        branch="reads",
        description="Pre-imported QIIME2 artifact",
    ),
    Stage(
        name="demux_summary",
        inputs=("demux",),
        outputs={"demux_visualization": "demux.qzv", "demux_summary": "summary"},
        command=DEMUX_SUMMARY,
        enabled_when=lambda f: f.run_denoising,
        publish_dir="demux",
        description="Per-position read quality summary",
    ),
    Stage(
        name="estimate_truncation",
        inputs=("demux_summary",),
        outputs={"trunc_lengths": "trunc_lengths.txt"},
        command=ESTIMATE_TRUNCATION,
        branch="truncation",
        publish_dir="demux",
        description="Truncation lengths from the quality profile",
    ),
    Stage(
        name="fixed_truncation",
        kind=StageKind.SOURCE,
        sources={"trunc_lengths": "{params.trunclenf},{params.trunclenr}"},
        branch="truncation",
        description="Truncation lengths given as parameters",
    ),
    Stage(
        name="dada2_denoise",
        inputs=("demux", "trunc_lengths"),
        outputs={
            "dada_table": "table.qza",
            "dada_repseqs": "rep-seqs.qza",
            "dada_stats": "stats.qza",
        },
        command=DADA2_DENOISE,
        enabled_when=lambda f: f.run_denoising,
        publish_dir="dada2",
        cpus=None,
        description="Denoise reads into ASVs with DADA2",
    ),
    Stage(
        name="reference_database",
        kind=StageKind.SOURCE,
        sources={"reference_database": "{params.reference_database}"},
        branch="classifier",
        description="Reference database archive or URL",
    ),
    Stage(
        name="train_classifier",
        inputs=("reference_database",),
        outputs={"classifier": "classifier.qza"},
        command=TRAIN_CLASSIFIER,
        branch="classifier",
        publish_dir="classifier",
        cpus=None,
        memory="max",
        description="Train a naive Bayes classifier on the primer region",
    ),
    Stage(
        name="load_classifier",
        kind=StageKind.SOURCE,
        sources={"classifier": "{params.classifier}"},
        branch="classifier",
        description="Supplied pre-trained classifier",
    ),
    Stage(
        name="classify",
        inputs=("classifier", "dada_repseqs"),
        outputs={"taxonomy": "taxonomy.qza", "taxonomy_tsv": "taxonomy.tsv"},
        command=CLASSIFY,
        enabled_when=lambda f: f.run_taxonomy,
        publish_dir="taxonomy",
        cpus=None,
        description="Assign taxonomy to ASVs",
    ),
    Stage(
        name="metadata",
        kind=StageKind.SOURCE,
        sources={"metadata": "{params.metadata}"},
        enabled_when=lambda f: f.run_barplot or f.run_diversity or f.run_rarefaction or f.run_ancom,
        description="Sample metadata sheet",
    ),
    Stage(
        name="filter_taxa",
        inputs=("dada_table", "dada_repseqs", "taxonomy"),
        outputs={"table": "filtered-table.qza", "repseqs": "filtered-sequences.qza"},
        command=FILTER_TAXA,
        branch="taxa_filter",
        publish_dir="filtered",
        description="Remove excluded taxa and rare features",
    ),
    Stage(
        name="unfiltered_passthrough",
        kind=StageKind.PASSTHROUGH,
        inputs=("dada_table", "dada_repseqs"),
        passthrough={"table": "dada_table", "repseqs": "dada_repseqs"},
        branch="taxa_filter",
        description="Forward unfiltered table and sequences",
    ),
    Stage(
        name="export_asv",
        inputs=("table", "repseqs"),
        outputs={"asv_table": "feature-table.tsv", "asv_fasta": "sequences.fasta"},
        command=EXPORT_ASV,
        enabled_when=lambda f: f.run_denoising,
        publish_dir="abundance_table",
        description="Export ASV table and sequences",
    ),
    Stage(
        name="filter_stats",
        inputs=("dada_stats", "asv_table"),
        outputs={"filter_stats": "count_table_filter_stats.tsv"},
        command=FILTER_STATS,
        enabled_when=lambda f: f.run_denoising,
        publish_dir="abundance_table",
        description="Read counts retained per filtering step",
    ),
    Stage(
        name="abundance_tables",
        inputs=("table", "taxonomy"),
        outputs={"abundance_tables": "relative_abundance"},
        command=ABUNDANCE_TABLES,
        enabled_when=lambda f: f.run_abundance_tables,
        publish_dir="rel_abundance_tables",
        description="Relative abundance per ASV and taxonomic level",
    ),
    Stage(
        name="barplot",
        inputs=("table", "taxonomy", "metadata"),
        outputs={"barplot": "taxa-bar-plots.qzv"},
        command=BARPLOT,
        enabled_when=lambda f: f.run_barplot,
        publish_dir="barplot",
        description="Taxonomic composition bar plots",
    ),
    Stage(
        name="phylogeny",
        inputs=("repseqs",),
        outputs={"rooted_tree": "rooted-tree.qza"},
        command=PHYLOGENY,
        enabled_when=lambda f: f.run_diversity or f.run_rarefaction,
        publish_dir="phylogenetic_tree",
        cpus=None,
        description="Rooted phylogenetic tree of ASVs",
    ),
    Stage(
        name="alpha_rarefaction",
        inputs=("table", "rooted_tree", "asv_table", "metadata"),
        outputs={"rarefaction": "alpha-rarefaction.qzv"},
        command=ALPHA_RAREFACTION,
        enabled_when=lambda f: f.run_rarefaction,
        publish_dir="alpha-rarefaction",
        description="Alpha rarefaction curves",
    ),
    Stage(
        name="combine_table",
        inputs=("asv_table", "asv_fasta", "taxonomy_tsv"),
        outputs={"combined_table": "qiime2_ASV_table.tsv"},
        command=COMBINE_TABLE,
        enabled_when=lambda f: f.run_taxonomy,
        publish_dir="abundance_table",
        description="ASV table joined with sequences and taxonomy",
    ),
    Stage(
        name="diversity_core",
        inputs=("table", "rooted_tree", "asv_table", "metadata"),
        outputs={"core_metrics": "core"},
        command=DIVERSITY_CORE,
        enabled_when=lambda f: f.run_diversity,
        publish_dir="diversity",
        cpus=None,
        description="Core phylogenetic diversity metrics",
    ),
    Stage(
        name="metadata_categories",
        inputs=("metadata",),
        outputs={"metadata_categories": "metadata_categories.txt"},
        command=METADATA_CATEGORIES,
        enabled_when=lambda f: f.run_diversity or f.run_ancom,
        publish_dir="diversity",
        description="Metadata columns usable for group tests",
    ),
    Stage(
        name="alpha_diversity",
        inputs=("core_metrics", "metadata"),
        outputs={"alpha_diversity": "alpha_diversity"},
        command=ALPHA_DIVERSITY,
        enabled_when=lambda f: f.run_diversity,
        publish_dir="diversity",
        description="Alpha diversity group significance",
    ),
    Stage(
        name="beta_diversity",
        inputs=("core_metrics", "metadata", "metadata_categories"),
        outputs={"beta_diversity": "beta_diversity"},
        command=BETA_DIVERSITY,
        enabled_when=lambda f: f.run_diversity,
        publish_dir="diversity",
        description="Beta diversity group significance",
    ),
    Stage(
        name="beta_ordination",
        inputs=("core_metrics", "metadata"),
        outputs={"beta_ordination": "beta_diversity_ordination"},
        command=BETA_ORDINATION,
        enabled_when=lambda f: f.run_diversity,
        publish_dir="diversity",
        description="PCoA ordination plots",
    ),
    Stage(
        name="ancom",
        inputs=("table", "taxonomy", "metadata", "metadata_categories"),
        outputs={"ancom": "."},
        command=ANCOM,
        enabled_when=lambda f: f.run_ancom,
        publish_dir="ancom",
        description="Differential abundance with ANCOM",
    ),
)


def get_stage(name: str) -> Stage:
    """Return the catalog stage called ``name``."""
    for stage in STAGES:
        if stage.name == name:
            return stage
    raise KeyError(f"Unknown stage: {name}")


def stage_names() -> List[str]:
    return [stage.name for stage in STAGES]


def stages_in_branch(branch: str) -> List[Stage]:
    return [stage for stage in STAGES if stage.branch == branch]


def command_options(params: PipelineParameters) -> Dict[str, str]:
    """
    Render the option snippets command templates refer to as ``opts``.

    Empty strings stand for options that are not given.
    """
    suffix = params.extension.rsplit("*", 1)[-1]

    def optional(flag: str, value: Optional[object]) -> str:
        return f"{flag} {value}" if value is not None else ""

    return {
        "r1_suffix": suffix.replace("{1,2}", "1"),
        "r2_suffix": suffix.replace("{1,2}", "2"),
        "discard_untrimmed": "" if params.retain_untrimmed else "--discard-untrimmed",
        "manifest_format": (
            "PairedEndFastqManifestPhred64V2"
            if params.phred64
            else "PairedEndFastqManifestPhred33V2"
        ),
        "multiqc_config": optional("--config", params.multiqc_config),
        "exclude_taxa": ",".join(params.taxa_to_exclude),
        "min_frequency": optional("--p-min-frequency", params.min_frequency),
        "min_samples": optional("--p-min-samples", params.min_samples),
        "metadata_category": params.metadata_category or "",
    }

"""
Concept dimension and concept matching
"""
import pandas as pd
import pytest
from clinical_dwh.transforms.concepts import (
    assign_unknown,
    build_dim_concepts,
    keyword_mask,
    match_codes,
    match_names,
    unknown_concept_id,
)


@pytest.fixture
def dim_concepts(sources):
    return build_dim_concepts(sources["d_labitems"], sources["d_icd_diagnoses"])


def test_keyword_mask_is_case_insensitive_substring():
    labels = pd.Series(["Sodium, Whole Blood", "PH", "Creatinine", None])
    assert keyword_mask(labels, ["sodium", "ph"]).tolist() == [True, True, False, False]


def test_concepts_tagged_by_catalog(dim_concepts):
    by_type = dim_concepts.groupby("concept_type")["concept_name"].apply(list).to_dict()
    assert by_type["Lab"] == ["Sodium", "Potassium", "Bicarbonate", "pH"]
    assert by_type["Diagnosis"] == ["Hyposmolality and/or hyponatremia", "Acidosis"]
    assert by_type["Unknown"] == ["Unknown concept"]


def test_exactly_one_unknown_concept(dim_concepts):
    assert (dim_concepts["concept_type"] == "Unknown").sum() == 1
    unknown = dim_concepts[dim_concepts["clinical_concept_id"] == unknown_concept_id(dim_concepts)].iloc[0]
    assert unknown["code"] == "UNKNOWN"
    assert unknown["description"] == "No matching concept found"


def test_concept_ids_are_sequential(dim_concepts):
    assert dim_concepts["clinical_concept_id"].tolist() == list(range(1, len(dim_concepts) + 1))


def test_lab_code_is_text_of_itemid():
    labitems = pd.DataFrame({"itemid": [50983.0], "label": ["Sodium"]})
    dim = build_dim_concepts(labitems, pd.DataFrame({"icd_code": [], "long_title": []}))
    assert dim.loc[dim["concept_type"] == "Lab", "code"].tolist() == ["50983"]


def test_match_codes_is_scoped_to_type(dim_concepts):
    # E872 is a diagnosis code, so it must not match in the Lab bucket
    ids = match_codes(pd.Series(["50983", "E872", "00000"]), dim_concepts, "Lab")
    assert ids.iloc[0] == 1
    assert ids.iloc[1:].isna().all()


def test_match_names_trims_and_ignores_case(dim_concepts):
    ids = match_names(pd.Series(["  SODIUM ", "potassium", "Blood Pressure"]), dim_concepts)
    assert ids.iloc[0] == 1
    assert ids.iloc[1] == 2
    assert pd.isna(ids.iloc[2])


def test_shared_label_matches_lowest_id_only():
    labitems = pd.DataFrame({"itemid": ["50983", "50824"], "label": ["Sodium", "Sodium"]})
    dim = build_dim_concepts(labitems, pd.DataFrame({"icd_code": [], "long_title": []}))
    ids = match_names(pd.Series(["sodium"]), dim)
    assert ids.tolist() == [1]


def test_missing_unknown_concept_is_an_error(dim_concepts):
    with pytest.raises(ValueError):
        unknown_concept_id(dim_concepts[dim_concepts["concept_type"] != "Unknown"])


def test_assign_unknown_fills_only_missing(dim_concepts):
    fact = pd.DataFrame({"clinical_concept_id": pd.array([1, None], dtype="Int64")})
    out = assign_unknown(fact, dim_concepts)
    assert out["clinical_concept_id"].tolist() == [1, unknown_concept_id(dim_concepts)]
    assert fact["clinical_concept_id"].isna().sum() == 1

"""
Default electrode layout of the 64-channel cap used in the study.

Electrodes are identified by their channel label (numbers on this cap). The
adjacency lists cover both search regions. Edges are used in the listed
direction only; a few neighbours (34 -> 37, 39 -> 34) are listed one way.
"""

ERN_SEARCH_REGION = ["10", "43", "38", "6", "5", "37", "39", "4", "2", "1", "34", "36", "3", "33", "35", "17"]

PE_SEARCH_REGION = ["1", "33", "3", "35", "17", "20", "18", "49", "51", "22", "19", "50", "53", "23", "54", "24", "55"]

MIDLINE_ELECTRODES = ["38", "5", "37", "2", "1", "34", "33", "17", "18", "49", "19", "50", "23"]

ADJACENCY = {
    # fronto-central (ERN) region
    "10": ["38", "43"],
    "43": ["10", "38"],
    "38": ["10", "43", "5", "37"],
    "6": ["5", "4"],
    "5": ["38", "6", "37", "2"],
    "37": ["38", "39", "5"],
    "39": ["36", "37", "34"],
    "4": ["6", "2", "3"],
    "2": ["5", "1", "4"],
    "34": ["37", "36", "1"],
    "36": ["39", "34", "35"],
    # centro-parietal (Pe) region
    "20": ["3", "22", "18"],
    "18": ["17", "20", "19"],
    "49": ["17", "51", "50"],
    "51": ["35", "49", "53"],
    "22": ["20", "19", "24"],
    "19": ["18", "50", "23", "22"],
    "50": ["49", "19", "23", "53"],
    "53": ["51", "50", "55"],
    "23": ["19", "50", "54"],
    "54": ["23"],
    "24": ["22"],
    "55": ["53"],
    # shared by both regions
    "1": ["2", "34", "33"],
    "33": ["1", "17"],
    "3": ["4", "20"],
    "35": ["36", "51"],
    "17": ["18", "49", "33"],
}

SEARCH_REGIONS = {"ERN": ERN_SEARCH_REGION, "Pe": PE_SEARCH_REGION}

COMPONENT_WINDOWS = {"ERN": [0, 100], "Pe": [200, 500]}

COMPONENT_POLARITY = {"ERN": "negative", "Pe": "positive"}

# Visible-condition error-minus-correct waves averaged into the reference waveform.
REFERENCE_WAVES = [
    "diffWave_soc-vis-FE",
    "diffWave_soc-vis-NFE",
    "diffWave_nonsoc-vis-FE",
    "diffWave_nonsoc-vis-NFE",
]

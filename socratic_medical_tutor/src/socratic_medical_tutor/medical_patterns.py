"""
Medical Pattern Libraries

Static term tables used by the intent classifier, the requirement generator
and the six assessment signals:
- Medical vocabulary (basic / advanced / domain tiers)
- Reasoning connectives (causal, comparative, conditional, sequential, evidential)
- Concept-category markers (pathophysiology, diagnosis, treatment, pharmacology, risk factors)
- Clinical reasoning frames (diagnostic, therapeutic, prognostic)
- Topic-specific term sets per condition

Pure data plus two small matching helpers. No scoring logic lives here.
"""

import re
from functools import lru_cache
from typing import Dict, Iterable, List, Pattern


MEDICAL_VOCABULARY: Dict[str, Dict[str, List[str]]] = {
    "basic": {
        "general": [
            "patient", "diagnosis", "treatment", "symptom", "condition", "clinical",
            "medical", "disease", "syndrome", "sign", "therapy", "medication",
        ],
    },
    "advanced": {
        "concepts": [
            "pathophysiology", "etiology", "prognosis", "differential", "manifestation",
            "comorbidity", "contraindication", "therapeutic", "pharmacokinetics",
            "biomarker", "phenotype", "dysfunction", "pathogenesis",
        ],
        "process": [
            "mechanism", "pathway", "cascade", "regulation", "metabolism", "synthesis",
            "degradation", "signaling", "feedback", "homeostasis", "perfusion",
        ],
        "anatomy": [
            "organ", "tissue", "anatomical", "physiological", "cellular", "molecular",
            "neural", "muscular",
        ],
        "practice": [
            "assessment", "evaluation", "examination", "investigation", "intervention",
            "monitoring", "follow-up", "referral", "management", "protocol",
        ],
    },
    "domain": {
        "cardiovascular": [
            "cardiac", "heart", "coronary", "vascular", "blood pressure", "hypertension",
            "hypotension", "arrhythmia", "myocardial", "ischemia", "stenosis",
            "atherosclerosis", "embolism", "endothelial", "vasospasm", "vasoconstriction",
        ],
        "respiratory": [
            "pulmonary", "lung", "respiratory", "airway", "ventilation", "oxygenation",
            "pneumonia", "asthma", "copd", "bronchial", "alveolar", "pleural",
        ],
        "renal": [
            "renal", "kidney", "proteinuria", "glomerular", "creatinine", "oliguria",
            "nephropathy", "electrolyte",
        ],
        "neurological": [
            "neurological", "brain", "spinal", "neuron", "synaptic", "cognitive",
            "seizure", "stroke", "meningitis", "encephalitis", "neuropathy",
        ],
        "gastrointestinal": [
            "gastrointestinal", "hepatic", "gastric", "intestinal", "digestive", "bowel",
            "liver", "pancreatic", "biliary", "peptic",
        ],
        "endocrine": [
            "hormonal", "endocrine", "diabetes", "thyroid", "insulin", "glucose",
            "metabolic", "adrenal", "pituitary", "hormone",
        ],
        "obstetric": [
            "pregnancy", "prenatal", "fetal", "maternal", "obstetric", "gynecological",
            "uterine", "placental", "placenta", "cervical", "ovarian", "preeclampsia",
            "eclampsia", "gestational",
        ],
        "infectious": [
            "infection", "bacterial", "viral", "fungal", "antibiotic", "antimicrobial",
            "sepsis", "immunocompromised", "pathogen", "microorganism",
        ],
        "oncology": [
            "cancer", "malignant", "benign", "tumor", "metastasis", "carcinoma",
            "chemotherapy", "radiation", "oncology", "biopsy", "staging",
        ],
        "pharmacology": [
            "magnesium sulfate", "antihypertensive", "labetalol", "nifedipine",
            "hydralazine", "aspirin", "metformin", "diuretic", "beta blocker",
            "ace inhibitor", "corticosteroid", "anticoagulant", "bronchodilator",
        ],
    },
}

VOCABULARY_TIER_WEIGHTS: Dict[str, float] = {
    "basic": 1.0,
    "advanced": 2.0,
    "domain": 2.5,
}

REASONING_PATTERNS: Dict[str, List[str]] = {
    "causal": [
        "because", "since", "due to", "caused by", "causing", "causes", "results from",
        "leads to", "leading to", "results in", "resulting in", "triggers", "induces",
        "precipitates", "contributes to", "therefore",
    ],
    "comparative": [
        "compared to", "compared with", "versus", "rather than", "instead of", "unlike",
        "similar to", "differs from", "in contrast", "whereas", "however",
    ],
    "conditional": [
        "if", "unless", "provided that", "assuming", "given that", "in case of",
        "depending on", "otherwise",
    ],
    "sequential": [
        "first", "then", "next", "subsequently", "following", "after", "before",
        "initially", "finally", "eventually",
    ],
    "evidential": [
        "indicates", "suggests", "demonstrates", "shows", "reveals", "confirms",
        "supports", "contradicts", "implies", "evidence",
    ],
}

CONCEPT_CATEGORY_PATTERNS: Dict[str, List[str]] = {
    "pathophysiology": [
        "mechanism", "pathway", "dysfunction", "endothelial", "inflammation",
        "inflammatory", "vasospasm", "ischemia", "cascade", "release", "damage",
        "impaired", "abnormal", "perfusion", "resistance", "causing", "invasion",
        "remodeling", "oxidative stress",
    ],
    "diagnosis": [
        "diagnosis", "diagnose", "criteria", "presentation", "presents with",
        "symptoms", "signs", "test", "laboratory", "lab", "imaging", "proteinuria",
        "hypertension", "blood pressure", "screening", "ultrasound", "biopsy",
    ],
    "treatment": [
        "treatment", "treat", "managed", "manage", "management", "therapy", "delivery",
        "intervention", "surgery", "monitoring", "lifestyle", "supportive care",
    ],
    "pharmacology": [
        "magnesium sulfate", "drug", "dose", "dosing", "medication", "labetalol",
        "nifedipine", "hydralazine", "antihypertensive", "aspirin", "insulin",
        "metformin", "antibiotic", "corticosteroid", "side effect",
    ],
    "risk_factors": [
        "risk factor", "risk", "predisposes", "predisposing", "history of", "obesity",
        "nulliparity", "advanced maternal age", "family history", "smoking",
        "chronic hypertension", "multiple gestation",
    ],
}

CLINICAL_REASONING_PATTERNS: Dict[str, Dict[str, List[str]]] = {
    "diagnostic": {
        "positive": [
            "differential diagnosis", "rule out", "workup", "investigate", "assess for",
            "clinical presentation", "history and physical", "laboratory studies",
            "imaging", "diagnosed by", "diagnosed with", "presents with", "red flags",
            "most likely", "consistent with",
        ],
        "negative": ["definitely", "obviously", "always", "never", "impossible", "certain"],
    },
    "therapeutic": {
        "positive": [
            "managed with", "treated with", "treatment", "first-line", "second-line",
            "contraindicated", "monitor for", "titrate", "dose adjustment",
            "side effects", "evidence-based", "guidelines recommend", "prevent",
            "prophylaxis", "definitive treatment",
        ],
        "negative": ["cure", "fix", "heal completely", "permanent solution", "guarantee"],
    },
    "prognostic": {
        "positive": [
            "leading to", "leads to", "complications", "progress to",
            "progresses to", "risk of", "prognosis depends", "long-term", "outcome",
            "mortality", "morbidity", "surveillance",
        ],
        "negative": ["will definitely", "always fatal", "completely benign", "no risk"],
    },
}

HEDGING_TERMS: List[str] = ["may", "might", "could", "possible", "likely", "consider", "suggest"]

TOPIC_SPECIFIC_PATTERNS: Dict[str, Dict[str, List[str]]] = {
    "preeclampsia": {
        "aliases": ["preeclampsia", "pre-eclampsia", "eclampsia", "hellp"],
        "key_terms": [
            "preeclampsia", "eclampsia", "hellp", "proteinuria", "hypertension",
            "blood pressure", "placenta", "maternal", "fetal",
        ],
        "mechanisms": [
            "placental dysfunction", "endothelial dysfunction", "vasospasm",
            "inflammatory response", "abnormal trophoblast invasion",
        ],
        "symptoms": ["headache", "visual disturbances", "epigastric pain", "edema", "oliguria"],
        "complications": [
            "seizures", "stroke", "liver dysfunction", "coagulopathy",
            "fetal growth restriction",
        ],
        "management": [
            "magnesium sulfate", "antihypertensive", "delivery", "corticosteroids",
            "monitoring",
        ],
        "risk_factors": [
            "nulliparity", "chronic hypertension", "multiple gestation", "obesity",
            "previous preeclampsia",
        ],
    },
    "diabetes": {
        "aliases": ["diabetes", "diabetic", "hyperglycemia", "gestational diabetes"],
        "key_terms": ["diabetes", "insulin", "glucose", "glycemic", "hyperglycemia", "hypoglycemia", "hba1c"],
        "mechanisms": ["insulin resistance", "beta cell dysfunction", "glucose metabolism", "pancreatic"],
        "symptoms": ["polyuria", "polydipsia", "polyphagia", "fatigue", "blurred vision"],
        "complications": ["neuropathy", "nephropathy", "retinopathy", "cardiovascular disease", "ketoacidosis"],
        "management": ["metformin", "insulin therapy", "lifestyle modification", "blood glucose monitoring"],
        "risk_factors": ["obesity", "family history", "sedentary lifestyle", "gestational diabetes"],
    },
    "hypertension": {
        "aliases": ["hypertension", "high blood pressure", "hypertensive"],
        "key_terms": ["hypertension", "blood pressure", "systolic", "diastolic", "cardiovascular", "vascular"],
        "mechanisms": ["peripheral resistance", "cardiac output", "renin-angiotensin", "sympathetic nervous system"],
        "symptoms": ["asymptomatic", "headache", "dyspnea", "chest pain", "epistaxis"],
        "complications": ["stroke", "myocardial infarction", "heart failure", "kidney disease", "retinopathy"],
        "management": ["ace inhibitors", "diuretics", "calcium channel blockers", "lifestyle changes"],
        "risk_factors": ["age", "obesity", "high salt intake", "family history", "smoking"],
    },
    "heart_failure": {
        "aliases": ["heart failure", "cardiac failure", "chf"],
        "key_terms": ["heart failure", "ejection fraction", "cardiac output", "preload", "afterload"],
        "mechanisms": ["ventricular remodeling", "neurohormonal activation", "reduced contractility", "fluid retention"],
        "symptoms": ["dyspnea", "orthopnea", "edema", "fatigue", "paroxysmal nocturnal dyspnea"],
        "complications": ["arrhythmia", "pulmonary edema", "cardiogenic shock", "renal impairment"],
        "management": ["diuretics", "ace inhibitors", "beta blockers", "sodium restriction"],
        "risk_factors": ["coronary artery disease", "hypertension", "diabetes", "valvular disease"],
    },
    "asthma": {
        "aliases": ["asthma", "asthmatic", "bronchospasm"],
        "key_terms": ["asthma", "airway", "bronchospasm", "wheeze", "peak flow"],
        "mechanisms": ["airway inflammation", "bronchial hyperresponsiveness", "mucus production", "smooth muscle constriction"],
        "symptoms": ["wheezing", "cough", "chest tightness", "shortness of breath"],
        "complications": ["status asthmaticus", "respiratory failure", "airway remodeling"],
        "management": ["inhaled corticosteroids", "bronchodilators", "trigger avoidance", "action plan"],
        "risk_factors": ["atopy", "allergen exposure", "smoking", "family history"],
    },
    "sepsis": {
        "aliases": ["sepsis", "septic", "septic shock"],
        "key_terms": ["sepsis", "infection", "organ dysfunction", "lactate", "hypotension"],
        "mechanisms": ["dysregulated host response", "vasodilation", "capillary leak", "cytokine release"],
        "symptoms": ["fever", "tachycardia", "tachypnea", "altered mental status"],
        "complications": ["septic shock", "multi-organ failure", "disseminated intravascular coagulation"],
        "management": ["early antibiotics", "fluid resuscitation", "vasopressors", "source control"],
        "risk_factors": ["immunosuppression", "extremes of age", "indwelling devices", "chronic disease"],
    },
    "ectopic_pregnancy": {
        "aliases": ["ectopic pregnancy", "ectopic", "tubal pregnancy"],
        "key_terms": ["ectopic", "fallopian tube", "beta-hcg", "transvaginal ultrasound", "rupture"],
        "mechanisms": ["impaired tubal transport", "tubal damage", "implantation outside the uterus"],
        "symptoms": ["abdominal pain", "vaginal bleeding", "amenorrhea", "shoulder tip pain"],
        "complications": ["tubal rupture", "hemorrhage", "hypovolemic shock"],
        "management": ["methotrexate", "salpingectomy", "salpingostomy", "expectant management"],
        "risk_factors": ["pelvic inflammatory disease", "previous ectopic", "tubal surgery", "iud", "smoking"],
    },
}

COHERENCE_MARKERS: List[str] = [
    "first", "second", "third", "also", "additionally", "furthermore", "moreover",
    "however", "therefore", "finally", "in addition", "as a result",
]

GIVE_UP_PATTERNS: List[Pattern] = [
    re.compile(r"^(i )?(really )?(don'?t|do not|dont) know\b"),
    re.compile(r"^(no idea|not sure|unsure|i'?m not sure|i am not sure|no clue|dunno)\b"),
    re.compile(r"^(i have )?no (idea|clue)\b"),
    re.compile(r"^(confused|lost|stuck|pass|skip)\b"),
    re.compile(r"^i give up\b"),
    re.compile(r"\b(don'?t|do not) (really )?understand\b"),
    re.compile(r"\bnot following\b"),
    re.compile(r"\bmakes no sense\b"),
    re.compile(r"\bi (can'?t|cannot) remember\b"),
]


@lru_cache(maxsize=4096)
def term_pattern(term: str) -> Pattern:
    """Compile a word-boundary regex for a term, allowing a short inflection."""
    return re.compile(r"\b" + re.escape(term.lower()) + r"(?:s|es|al|ic|ed)?\b")


def find_terms(text: str, terms: Iterable[str]) -> List[str]:
    """Return the terms found in text, in table order, without duplicates."""
    lowered = text.lower()
    found: List[str] = []
    for term in terms:
        if term not in found and term_pattern(term).search(lowered):
            found.append(term)
    return found


def iter_vocabulary():
    """Yield (tier, category, term) for every vocabulary entry."""
    for tier, categories in MEDICAL_VOCABULARY.items():
        for category, terms in categories.items():
            for term in terms:
                yield tier, category, term


def all_medical_terms() -> List[str]:
    seen: List[str] = []
    for _, _, term in iter_vocabulary():
        if term not in seen:
            seen.append(term)
    return seen

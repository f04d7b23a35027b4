from pydantic import BaseModel


class LicensedStates(BaseModel):
    resident: list[str] = []
    nonResident: list[str] = []


class ReportAnalysis(BaseModel):
    carriers: list[str] = []
    uniqueStates: list[str] = []
    licensedStates: LicensedStates
    analyzedAt: str


class ReportAnalysisMetrics(BaseModel):
    durationSeconds: float
    carriersFound: int
    residentStates: int
    nonResidentStates: int


class ReportAnalysisResponse(BaseModel):
    success: bool
    message: str
    analysis: ReportAnalysis
    metrics: ReportAnalysisMetrics

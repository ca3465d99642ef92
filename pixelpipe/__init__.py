"""Design document.

Abstractions related to image content:

Image - Holds a decoded pixel buffer in memory. An Image is either live or
        disposed; once disposed, every read raises UseAfterDispose and a
        second dispose raises DoubleDispose.

        An Image has exactly one owner at a time. Ownership moves only
        explicitly (a stage that consumes a column it was handed), never
        by aliasing the same object into another column.

Dataset - The caller's records. A pipeline borrows the images in them:
        after any run they are as live (or disposed) as they were before,
        unless the caller created the Dataset with transfer_ownership=True.

Abstractions related to image processing:

Transformer - the nodes of the pipeline. Each declares its input and
        output columns, and for each input whether it borrows it or
        consumes it. Only a consuming stage that was actually given
        ownership may dispose an input, and only after its outputs exist.

Estimator - a stage that must be fit to data. Fitting returns a Transformer.

EstimatorChain / TransformerChain - ordered stages. Fitting an
        EstimatorChain returns a TransformerChain; transforming returns a
        lazy view that runs the stages row by row when it is enumerated.
        The executor owns every value a stage produces, disposes the ones
        nobody consumed when the row is done, and (with ownership checks
        on) copies any output that is the same object as an image it does
        not own.

Lifecycle errors are never swallowed. Read an image directly and you get
UseAfterDispose; trigger it from inside a stage and you get StageError with
the UseAfterDispose as its cause; trigger it while evaluating and you get
WrappedEvaluationFailure on top of that.

"""
